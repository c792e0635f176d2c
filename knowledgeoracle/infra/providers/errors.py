"""Provider failure taxonomy and classification of raw error bodies."""

from __future__ import annotations

import json
import re

DEFAULT_FAILURE_MESSAGE = "Model provider unavailable. Try again later."

# HTTP statuses that abort the whole cascade regardless of the body.
FATAL_STATUSES = frozenset({401, 403, 429})

_PARAM_RE = re.compile(r"unsupported (?:parameter|value):\s*'([\w.]+)'", re.IGNORECASE)


class ProviderError(Exception):
    """Base for classified provider failures."""

    default_code = "unknown"

    def __init__(
        self,
        message: str,
        code: str = "",
        status: int | None = None,
        raw: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status
        self.raw = raw or message


class FatalProviderError(ProviderError):
    """Authentication, authorization, quota or rate-limit failure."""


class TransientProviderError(ProviderError):
    """Network, timeout or server-side failure; another attempt may succeed."""


class UnsupportedParameterError(ProviderError):
    """The model rejected an optional request parameter."""

    default_code = "unsupported_parameter"

    def __init__(self, message: str, parameter: str = "", **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.parameter = parameter


class ContextLengthError(ProviderError):
    default_code = "context_length_exceeded"


class ModelUnavailableError(ProviderError):
    """Model does not exist or the project has no access to it."""

    default_code = "model"


def _safe_json(text: str):
    trimmed = text.strip()
    if not trimmed or trimmed[0] not in "{[":
        return None
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        return None


def extract_message(raw) -> str:
    """Pull the human-readable message out of a provider error body."""
    text = str(raw or "").strip()
    if not text:
        return ""
    parsed = _safe_json(text)
    if not isinstance(parsed, dict):
        return text
    error = parsed.get("error")
    candidates = [
        error.get("message") if isinstance(error, dict) else None,
        parsed.get("message"),
        parsed.get("error_description"),
        error if isinstance(error, str) else None,
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return text


def _extract_param(raw: str, message: str) -> str:
    parsed = _safe_json(str(raw or ""))
    if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict):
        param = parsed["error"].get("param")
        if isinstance(param, str) and param:
            return param
    if m := _PARAM_RE.search(message):
        return m.group(1)
    return ""


def clamp(text: str, limit: int = 320) -> str:
    s = str(text or "")
    if len(s) <= limit:
        return s
    return s[: max(0, limit - 3)] + "..."


def _message_code(lower: str) -> str:
    if (
        "insufficient_quota" in lower
        or "exceeded your current quota" in lower
        or ("quota" in lower and "openai" in lower)
    ):
        return "quota_exceeded"
    if "rate limit" in lower or "too many requests" in lower:
        return "rate_limited"
    if (
        "invalid api key" in lower
        or "incorrect api key" in lower
        or "unauthorized" in lower
        or "invalid_api_key" in lower
    ):
        return "invalid_api_key"
    if "unsupported parameter" in lower or "unsupported value" in lower:
        return "unsupported_parameter"
    if "model_not_found" in lower or (
        "model" in lower
        and any(s in lower for s in ("does not exist", "not found", "invalid", "permission"))
    ):
        return "model"
    if "context_length_exceeded" in lower or "maximum context length" in lower:
        return "context_length_exceeded"
    if "timeout" in lower or "timed out" in lower or "abort" in lower:
        return "timeout"
    return "unknown"


_FATAL_CODES = frozenset({"quota_exceeded", "rate_limited", "invalid_api_key"})


def classify_failure(status: int | None, raw) -> ProviderError:
    """Map an HTTP status and error body to a typed provider exception."""
    message = extract_message(raw) or DEFAULT_FAILURE_MESSAGE
    code = _message_code(message.lower())
    kwargs = {"status": status, "raw": clamp(message, 480)}
    short = clamp(message, 360)

    if status in FATAL_STATUSES:
        if code not in _FATAL_CODES:
            code = "rate_limited" if status == 429 else "invalid_api_key"
        return FatalProviderError(short, code=code, **kwargs)
    if code in _FATAL_CODES:
        return FatalProviderError(short, code=code, **kwargs)
    if code == "unsupported_parameter":
        return UnsupportedParameterError(
            short, parameter=_extract_param(raw, message), code=code, **kwargs
        )
    if code == "model":
        return ModelUnavailableError(short, code=code, **kwargs)
    if code == "context_length_exceeded":
        return ContextLengthError(short, code=code, **kwargs)
    return TransientProviderError(short, code=code, **kwargs)
