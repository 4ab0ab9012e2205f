from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    BAD_REQUEST = "bad_request"
    AUTH = "auth"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNPROCESSABLE = "unprocessable"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    CANCELLED = "cancelled"
    RESPONSE_VALIDATION = "response_validation"
    TOOL_FAILED = "tool_failed"
    UNKNOWN = "unknown"


def error_code_for_status(status_code: int | None) -> ErrorCode:
    if status_code is None:
        return ErrorCode.UNKNOWN
    if status_code == 400:
        return ErrorCode.BAD_REQUEST
    if status_code == 401:
        return ErrorCode.AUTH
    if status_code == 403:
        return ErrorCode.PERMISSION
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    if status_code == 409:
        return ErrorCode.CONFLICT
    if status_code == 422:
        return ErrorCode.UNPROCESSABLE
    if status_code == 429:
        return ErrorCode.RATE_LIMIT
    if 500 <= status_code <= 599:
        return ErrorCode.SERVER_ERROR
    return ErrorCode.UNKNOWN
