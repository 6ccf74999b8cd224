import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from . import metrics
from .access import SharedSecretGuard
from .cache import RedisCacheStorage, create_redis_client
from .errors import RateLimitedError
from .logging_config import configure_logging
from .rate_limit import RateLimiter
from .request_context import request_id_ctx
from .routers import health
from .settings import settings

configure_logging()
logger = logging.getLogger("worlds")


@asynccontextmanager
async def lifespan(app: FastAPI):
    cache = RedisCacheStorage(create_redis_client(settings.REDIS_URL))
    rate_limiter = RateLimiter.from_settings(cache, settings)
    app.state.cache = cache
    app.state.rate_limiter = rate_limiter
    app.state.shared_secret_guard = SharedSecretGuard(rate_limiter)
    logger.info(
        "shared secret limiter max_attempts=%s window_seconds=%s",
        rate_limiter.config.max_attempts_per_window,
        rate_limiter.config.window_seconds,
    )
    yield
    await cache.close()


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_ctx.set(request_id)
        response = await call_next(request)
        logger.info(
            "request_id=%s method=%s path=%s status=%s",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
        )
        response.headers["x-request-id"] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        metrics.record_request(request.method, request.url.path, response.status_code)
        return response


async def rate_limited_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
    # Only the world name leaves the service; attempt counts and timings stay in the logs.
    return JSONResponse(status_code=429, content={"detail": str(exc)})


app = FastAPI(title="Worlds API", lifespan=lifespan)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestLogMiddleware)
app.add_exception_handler(RateLimitedError, rate_limited_handler)

app.include_router(health.router)
