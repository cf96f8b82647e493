# jobs/handlers.py
"""
Job handlers for each job kind.

A handler takes the claimed envelope and returns the analysis output dict.
It raises TransientError / PermanentError for classified downstream
failures; anything else is treated as unknown by the worker pool.
Unparseable model output is still a successful run, stored with
status "failed_to_parse" and the raw text kept for inspection.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from jobs.envelope import JobEnvelope, JobKind, PeriodSummaryPayload, TradeSummaryPayload
from jobs.errors import PermanentError
from services.llm_output import parse_tolerant
from services.openai_llm import chat_completion

logger = logging.getLogger(__name__)

Handler = Callable[[JobEnvelope], Awaitable[dict]]

JSON_RULES = (
    "Return ONLY a valid JSON object, no markdown fences and no extra text. "
    "Present monetary values in Indian Rupees using the '₹' symbol. "
    "Use ISO 8601 UTC strings for any dates."
)

TRADE_SYSTEM_PROMPT = (
    "You are a professional trading analyst. Analyze the trade and respond with JSON "
    'of the form {"summaryText": str, "plusPoints": [str], "minusPoints": [str], '
    '"aiSuggestions": [str], "score": int 1-10, "tags": [str]}. '
    "Focus on entry/exit timing, position sizing, risk management and emotional control. "
    + JSON_RULES
)

PERIOD_SYSTEM_PROMPT = (
    "You are a trading performance coach. Analyze the {period} trading statistics and "
    'respond with JSON of the form {{"summaryText": str, "plusPoints": [str], '
    '"minusPoints": [str], "aiSuggestions": [str], "stats": object, "narrative": str}}. '
    + JSON_RULES.replace("{", "{{").replace("}", "}}")
)

PERIOD_NAMES = {
    JobKind.DAILY_SUMMARY: "daily",
    JobKind.WEEKLY_SUMMARY: "weekly",
    JobKind.MONTHLY_SUMMARY: "monthly",
}


# ─────────────────────────────────────────────
# helpers
# ─────────────────────────────────────────────

def _load(job: JobEnvelope, model: type[BaseModel]) -> Any:
    try:
        return model.model_validate(job.payload)
    except PydanticValidationError as exc:
        raise PermanentError(f"Malformed payload for {job.kind.value}: {exc.error_count()} error(s)") from exc


def _as_list(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return [str(v) for v in value if v is not None]
    return [str(value)]


def _as_score(value: Any) -> int | None:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return min(max(score, 1), 10)


def normalize_analysis(parsed: dict | None, raw_text: str, model: str | None) -> dict:
    if parsed is None:
        return {
            "status": "failed_to_parse",
            "summary_text": "",
            "plus_points": [],
            "minus_points": [],
            "ai_suggestions": [],
            "tags": [],
            "score": None,
            "stats": None,
            "model": model,
            "raw_response": raw_text,
        }

    summary = (
        parsed.get("summaryText")
        or parsed.get("summary")
        or parsed.get("narrative")
        or parsed.get("text")
        or ""
    )
    stats = parsed.get("weeklyStats") or parsed.get("monthlyStats") or parsed.get("stats")

    return {
        "status": "ready",
        "summary_text": str(summary),
        "plus_points": _as_list(parsed.get("plusPoints")),
        "minus_points": _as_list(parsed.get("minusPoints")),
        "ai_suggestions": _as_list(parsed.get("aiSuggestions")),
        "tags": _as_list(parsed.get("tags")),
        "score": _as_score(parsed.get("score")),
        "stats": stats if isinstance(stats, dict) else None,
        "model": model,
        "raw_response": raw_text,
    }


# ─────────────────────────────────────────────
# handlers
# ─────────────────────────────────────────────

async def handle_trade_summary(job: JobEnvelope) -> dict:
    payload: TradeSummaryPayload = _load(job, TradeSummaryPayload)

    logger.info("job=%s analyzing trade %s", job.id, payload.trade_id)
    snapshot = json.dumps(payload.trade, indent=2, default=str)
    raw = await chat_completion(
        TRADE_SYSTEM_PROMPT,
        f"Analyze this trade and return JSON analysis:\n\n{snapshot}",
        model=payload.model,
        temperature=0.3,
        max_tokens=500,
    )
    return normalize_analysis(parse_tolerant(raw), raw, payload.model)


async def handle_period_summary(job: JobEnvelope) -> dict:
    payload: PeriodSummaryPayload = _load(job, PeriodSummaryPayload)
    period = PERIOD_NAMES[job.kind]

    logger.info(
        "job=%s analyzing %s period %s..%s",
        job.id, period, payload.period_start.isoformat(), payload.period_end.isoformat(),
    )
    snapshot = json.dumps(
        {
            "periodStart": payload.period_start.isoformat(),
            "periodEnd": payload.period_end.isoformat(),
            "stats": payload.stats,
        },
        indent=2,
        default=str,
    )
    raw = await chat_completion(
        PERIOD_SYSTEM_PROMPT.format(period=period),
        f"Analyze this {period} trading data and return JSON analysis:\n\n{snapshot}",
        model=payload.model,
        temperature=0.2,
        max_tokens=1200,
    )
    return normalize_analysis(parse_tolerant(raw), raw, payload.model)


HANDLERS: dict[JobKind, Handler] = {
    JobKind.TRADE_SUMMARY: handle_trade_summary,
    JobKind.DAILY_SUMMARY: handle_period_summary,
    JobKind.WEEKLY_SUMMARY: handle_period_summary,
    JobKind.MONTHLY_SUMMARY: handle_period_summary,
}
