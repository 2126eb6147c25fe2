"""Input validation for CLI arguments, API requests and engine operations.

Centralised validation rules so the CLI, the web layer and the engine
share the same constraints.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# String length limits
# ---------------------------------------------------------------------------

MAX_PROJECT_NAME = 100
MAX_TASK_NAME = 300

# Epoch seconds for 9999-12-31, the largest value sqlite date() renders sanely
MAX_TIMESTAMP = 253402300799


# ---------------------------------------------------------------------------
# Validators — all raise ValueError on failure
# ---------------------------------------------------------------------------


def normalize_name(value: str | None, field: str, max_len: int) -> str | None:
    """Strip a name. Returns None for blank input, raises if too long.

    Blank names are not an error: catalog operations treat them as a no-op.
    """
    if value is None or not value.strip():
        return None
    stripped = value.strip()
    if len(stripped) > max_len:
        raise ValueError(f"{field} too long ({len(stripped)} chars, max {max_len})")
    return stripped


def validate_id(value: int, field: str) -> int:
    """Validate a database id (positive integer)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field} must be an integer (got {value!r})")
    if value < 1:
        raise ValueError(f"{field} must be positive (got {value})")
    return value


def validate_optional_id(value: int | None, field: str) -> int | None:
    if value is None:
        return None
    return validate_id(value, field)


def validate_index(value: int, field: str = "index") -> int:
    """Validate that an index is an integer. Range checks belong to the caller."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field} must be an integer (got {value!r})")
    return value


def validate_non_negative_int(value: int, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field} must be an integer (got {value!r})")
    if value < 0:
        raise ValueError(f"{field} cannot be negative (got {value})")
    return value


def validate_timestamp(value: int, field: str) -> int:
    """Validate integer seconds since epoch."""
    validate_non_negative_int(value, field)
    if value > MAX_TIMESTAMP:
        raise ValueError(f"{field} too large ({value}, max {MAX_TIMESTAMP})")
    return value


def validate_time_range(start_time: int, end_time: int) -> tuple[int, int]:
    """Validate a closed [start_time, end_time] range of epoch seconds."""
    validate_timestamp(start_time, "start_time")
    validate_timestamp(end_time, "end_time")
    if start_time > end_time:
        raise ValueError(f"start_time ({start_time}) is after end_time ({end_time})")
    return start_time, end_time


def validate_port(port: int) -> int:
    """Validate TCP port number."""
    if port < 1 or port > 65535:
        raise ValueError(f"Port must be 1-65535 (got {port})")
    return port
