"""Tests for downstream error classification."""
from __future__ import annotations

from unittest.mock import patch

import httpx
import openai
import pytest

from api.app.config import Settings
from jobs.errors import HandlerError, PermanentError, TransientError
from services.openai_llm import chat_completion, classify_api_error

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status: int):
    return cls("boom", response=httpx.Response(status, request=REQUEST), body=None)


def test_connection_and_timeout_are_transient():
    assert isinstance(classify_api_error(openai.APIConnectionError(request=REQUEST)), TransientError)
    assert isinstance(classify_api_error(openai.APITimeoutError(request=REQUEST)), TransientError)


@pytest.mark.parametrize(
    "cls,status",
    [
        (openai.RateLimitError, 429),
        (openai.InternalServerError, 500),
        (openai.InternalServerError, 503),
    ],
)
def test_throttling_and_5xx_are_transient(cls, status):
    assert isinstance(classify_api_error(_status_error(cls, status)), TransientError)


@pytest.mark.parametrize(
    "cls,status",
    [
        (openai.BadRequestError, 400),
        (openai.AuthenticationError, 401),
        (openai.PermissionDeniedError, 403),
        (openai.UnprocessableEntityError, 422),
    ],
)
def test_bad_input_is_permanent(cls, status):
    assert isinstance(classify_api_error(_status_error(cls, status)), PermanentError)


def test_unrecognized_error_stays_unclassified():
    error = classify_api_error(openai.OpenAIError("odd"))
    assert type(error) is HandlerError


@pytest.mark.asyncio
async def test_missing_api_key_is_permanent():
    with patch("services.openai_llm.get_settings", return_value=Settings(openai_api_key=None)):
        with pytest.raises(PermanentError):
            await chat_completion("system", "user")
