"""
Error handling and request logging middlewares.

Application errors become ``{"error": message}`` JSON responses with the
status code of their class; anything unexpected is logged and becomes a 500.
"""
import logging
import time

from aiohttp import web

from core.exceptions import MindstaError

logger = logging.getLogger(__name__)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except MindstaError as e:
        if e.http_status >= 500:
            logger.error(f"{request.method} {request.path}: {e.message}", extra={"path": request.path})
        else:
            logger.info(f"{request.method} {request.path} -> {e.http_status}: {e.message}")
        return web.json_response({"error": e.message}, status=e.http_status)
    except Exception as e:
        logger.error(
            f"Unhandled error on {request.method} {request.path}: {e}",
            exc_info=True,
            extra={"path": request.path},
        )
        return web.json_response({"error": "Internal server error"}, status=500)


@web.middleware
async def logging_middleware(request: web.Request, handler):
    """Log every request with its duration."""
    start_time = time.time()
    response = await handler(request)
    duration = time.time() - start_time
    logger.info(
        f"{request.method} {request.path} {response.status} in {duration:.3f}s",
        extra={"duration": duration, "path": request.path},
    )
    return response
