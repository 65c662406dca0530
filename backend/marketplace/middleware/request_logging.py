import logging
import time

from fastapi import Request

from marketplace.config.settings import settings
from marketplace.utils.logger import get_logger

logger = get_logger("marketplace.requests")


async def log_requests_middleware(request: Request, call_next):
    """Log method, path, status and duration of every request (body at DEBUG, truncated)."""
    started = time.perf_counter()

    content_type = request.headers.get("content-type", "")
    if logger.isEnabledFor(logging.DEBUG) and content_type.startswith("application/json"):
        body = await request.body()
        limit = settings.request_log_body_limit
        text = body[:limit].decode("utf-8", errors="replace")
        suffix = "…" if len(body) > limit else ""
        logger.debug("→ %s %s body=%s%s", request.method, request.url.path, text, suffix)

    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.exception("✗ %s %s failed after %.1fms", request.method, request.url.path, elapsed_ms)
        raise

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "← %s %s status=%d duration=%.1fms",
        request.method, request.url.path, response.status_code, elapsed_ms,
    )
    return response
