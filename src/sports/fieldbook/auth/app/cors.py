from typing import AbstractSet, Dict, Optional
from urllib.parse import urlparse

allowed_debug_hosts = {
    "localhost",
    "127.0.0.1",
}


def get_cors_headers(
    origin_value: Optional[str], allowed_origins: AbstractSet[str], debug: bool
) -> Dict[str, str]:
    """Return CORS headers for a request coming from ``origin_value``."""
    headers = {
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": (
            "Keep-Alive, User-Agent, X-Requested-With, "
            "If-Modified-Since, Cache-Control, Content-Type, Authorization"
        ),
        "Vary": "Origin",
    }

    if not origin_value:
        return headers

    parsed = urlparse(origin_value)
    if parsed.scheme and parsed.hostname:
        base = f"{parsed.scheme}://{parsed.hostname}"
        if parsed.port:
            base = f"{base}:{parsed.port}"
    else:
        base = origin_value

    if base in allowed_origins:
        headers["Access-Control-Allow-Origin"] = origin_value
        headers["Access-Control-Allow-Credentials"] = "true"
    elif debug and parsed.hostname in allowed_debug_hosts:
        headers["Access-Control-Allow-Origin"] = origin_value

    return headers
