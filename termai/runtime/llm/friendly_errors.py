from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ProviderHTTPError:
    friendly_message: str
    full_details: str
    status_code: int
    provider: str


def _parse_error_body(body: str) -> tuple[str | None, str | None]:
    # OpenAI, Anthropic and Google all nest details under {"error": {...}}.
    try:
        data: Any = json.loads(body)
    except (TypeError, ValueError):
        return None, None
    if not isinstance(data, dict):
        return None, None
    err = data.get("error")
    if not isinstance(err, dict):
        return None, None
    message = err.get("message")
    status = err.get("status")
    return (
        message if isinstance(message, str) else None,
        status if isinstance(status, str) else None,
    )


def friendly_message_for_status(status_code: int, body: str, provider: str) -> str:
    message, status = _parse_error_body(body)
    msg = message.lower() if message else None

    if status_code == 400:
        if msg is not None:
            if "api key" in msg or "api_key" in msg:
                return f"Invalid API key format. Please check your {provider} API key in Settings."
            if "model" in msg:
                return "Invalid model configuration. The selected model may not support this request."
            if "content" in msg or "safety" in msg:
                return "Request was blocked due to content policy. Please modify your message."
        return f"Bad request to {provider}. {message or 'Please check your request.'}"

    if status_code == 401:
        return f"Authentication failed. Please verify your {provider} API key in Settings."

    if status_code == 403:
        if msg is not None:
            if "permission" in msg or "access" in msg:
                return f"Access denied. Your {provider} API key may not have permission for this operation."
            if "region" in msg or "country" in msg:
                return f"{provider} service is not available in your region."
        return f"Access forbidden. Please check your {provider} API key permissions."

    if status_code == 404:
        if msg is not None and "model" in msg:
            return "Model not found. The selected model may not be available or the name is incorrect."
        return f"Resource not found on {provider}. Please check your configuration."

    if status_code == 429:
        if msg is not None:
            if "quota" in msg or status == "RESOURCE_EXHAUSTED":
                return f"Quota exceeded on {provider}. Check your usage limits or upgrade your plan."
            if "token" in msg or "rpm" in msg or "tpm" in msg:
                return "Rate limit reached. Please wait a moment before sending more requests."
        return f"Too many requests to {provider}. Please wait a moment and try again."

    if status_code == 500:
        return f"{provider} server error. The service is experiencing issues. Please try again."
    if status_code == 502:
        return f"{provider} gateway error. The service may be updating. Please try again in a moment."
    if status_code == 503:
        if msg is not None and ("overloaded" in msg or "capacity" in msg):
            return f"{provider} is currently overloaded. Please try again in a few minutes."
        return f"{provider} service is temporarily unavailable. Please try again later."
    if status_code == 504:
        return f"{provider} request timed out. The service may be slow. Please try again."
    if status_code == 529:
        return f"{provider} is overloaded. Please try again in a few minutes."
    if status_code >= 500:
        return f"{provider} server error (HTTP {status_code}). Please try again later."

    snippet = (message if message is not None else body)[:100]
    suffix = "..." if len(snippet) >= 100 else ""
    return f"{provider} error: {snippet}{suffix}"


def translate_http_error(status_code: int, body: str, *, provider: str, cloud: bool = True) -> ProviderHTTPError:
    full = f"HTTP {status_code}: {body}"
    # Local servers return free-form bodies; show them verbatim.
    friendly = friendly_message_for_status(status_code, body, provider) if cloud else full
    return ProviderHTTPError(friendly_message=friendly, full_details=full, status_code=status_code, provider=provider)
