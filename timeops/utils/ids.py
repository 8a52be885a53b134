"""
Request ID generation, sent as X-Request-ID on every API call.
"""
import time
import secrets

CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def _encode(num: int, length: int) -> str:
    chars = []
    for _ in range(length):
        num, remainder = divmod(num, 32)
        chars.append(CROCKFORD[remainder])
    return "".join(reversed(chars))


def new_request_id() -> str:
    """
    Time-sortable identifier: 10 chars of millisecond timestamp
    followed by 16 random chars.
    """
    millis = int(time.time() * 1000)
    return _encode(millis, 10) + "".join(secrets.choice(CROCKFORD) for _ in range(16))


def request_id(header_value: str | None = None) -> str:
    """Reuse an incoming request ID, or mint a new one."""
    if header_value and header_value.strip():
        return header_value.strip()
    return new_request_id()
