"""Per-IP rate limiting (SlowAPI); the client IP honours X-Forwarded-For behind a proxy."""
from fastapi import Request

from slowapi import Limiter

UNKNOWN_CLIENT = "127.0.0.1"


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer; empty when neither is known."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return ""


def _rate_limit_key(request: Request) -> str:
    return client_ip(request) or UNKNOWN_CLIENT


limiter = Limiter(key_func=_rate_limit_key)
