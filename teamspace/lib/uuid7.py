"""Time-ordered ids (UUID version 7) and their short display form."""

import secrets
import threading
import time
import uuid

SHORT_LENGTH = 8

_lock = threading.Lock()
_last_ms = 0
_seq = 0


def _next_stamp() -> tuple[int, int]:
    """Millisecond timestamp plus a 12-bit sequence, strictly increasing per process."""
    global _last_ms, _seq
    with _lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms > _last_ms:
            _last_ms = now_ms
            _seq = secrets.randbits(11)
        else:
            # same millisecond, or the clock stepped back
            _seq += 1
            if _seq > 0xFFF:
                _last_ms += 1
                _seq = 0
        return _last_ms, _seq


def uuid7() -> str:
    """Ids for messages, tasks, requests and events. Sort order is creation order."""
    ms, seq = _next_stamp()
    value = (ms & 0xFFFF_FFFF_FFFF) << 80 | 0x7 << 76 | seq << 64 | 0b10 << 62 | secrets.randbits(62)
    return str(uuid.UUID(int=value))


def short_id(full_id: str) -> str:
    """Last 8 characters: the random tail, unlike the timestamp prefix."""
    return full_id[-SHORT_LENGTH:]


def suffix_pattern(ref: str) -> str:
    """LIKE pattern (escape character ``\\``) matching ids that end in ``ref``."""
    if len(ref) < SHORT_LENGTH:
        raise ValueError(f"Id '{ref}' is shorter than {SHORT_LENGTH} characters")
    escaped = ref.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}"


__all__ = ["SHORT_LENGTH", "short_id", "suffix_pattern", "uuid7"]
