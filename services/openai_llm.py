# services/openai_llm.py
from __future__ import annotations

import logging

import openai
from openai import AsyncOpenAI

from api.app.config import get_settings
from jobs.errors import HandlerError, PermanentError, TransientError

logger = logging.getLogger(__name__)

# Statuses worth another attempt later
RETRYABLE_STATUS = {408, 409, 429}


def classify_api_error(exc: Exception) -> HandlerError:
    """Map an OpenAI SDK exception onto the queue's failure taxonomy."""
    if isinstance(exc, openai.APIConnectionError):  # includes APITimeoutError
        return TransientError(f"LLM connection error: {exc}")
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        if status in RETRYABLE_STATUS or status >= 500:
            return TransientError(f"LLM returned {status}: {exc.message}")
        return PermanentError(f"LLM rejected request ({status}): {exc.message}")
    return HandlerError(f"LLM call failed: {exc}")


async def chat_completion(
    system_prompt: str,
    user_message: str,
    model: str | None = None,
    temperature: float = 0.3,
    max_tokens: int = 800,
    timeout: float | None = None,
) -> str:
    """Run an LLM chat completion and return the assistant message text."""
    settings = get_settings()
    if not settings.openai_api_key:
        raise PermanentError("OPENAI_API_KEY is not configured")

    # The queue owns retries; the SDK must not retry on its own.
    client = AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        max_retries=0,
        timeout=timeout or settings.handler_timeout.total_seconds(),
    )
    model = model or settings.openai_model

    logger.info("LLM: sending request to %s", model)
    try:
        response = await client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except openai.OpenAIError as exc:
        raise classify_api_error(exc) from exc

    text = response.choices[0].message.content or ""
    logger.info("LLM: got %d chars response", len(text))
    return text
