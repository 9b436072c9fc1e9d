"""Configuration constants for the Hitbox web backend."""

# SSE response headers: disable proxy buffering for real-time streaming
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}

# Identity header set by the upstream gateway; local runs fall back to one user.
USER_ID_HEADER = "X-User-Id"
DEFAULT_USER_ID = "local"

KEEPALIVE_SEC = 30
RECONNECT_MS = 5000
