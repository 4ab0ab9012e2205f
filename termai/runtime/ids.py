from __future__ import annotations

import time
import uuid


def new_id(prefix: str) -> str:
    ts = time.time_ns()
    rand = uuid.uuid4().hex
    return f"{prefix}_{ts:016x}_{rand}"


def new_tool_call_id() -> str:
    # Matches OpenAI-style ids; some gateways reject ids longer than 40 chars.
    return f"call_{uuid.uuid4().hex}"


def now_ts_ms() -> int:
    return int(time.time() * 1000)


def now_ts() -> float:
    return time.time()
