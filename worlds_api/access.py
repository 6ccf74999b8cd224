"""Shared-secret world access: bcrypt check throttled by the failed-attempt limiter."""
import logging

import bcrypt
from fastapi import Request

from worlds_api.errors import RateLimitedError
from worlds_api.rate_limit import RateLimiter
from worlds_api.request_context import request_id_ctx

audit = logging.getLogger("worlds.access")


def hash_secret(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _verify_secret(plain: str | None, hashed: str | None) -> bool:
    if not plain or not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def client_subject(request: Request) -> str:
    if request.client:
        return request.client.host
    return request.headers.get("x-forwarded-for", "unknown").split(",")[0].strip()


class SharedSecretGuard:
    def __init__(self, rate_limiter: RateLimiter):
        self.rate_limiter = rate_limiter

    async def check(
        self, world_name: str, subject: str, plain_secret: str | None, hashed_secret: str | None
    ) -> bool:
        """
        Return True when the secret matches, False on a wrong secret.
        Raises RateLimitedError when the subject is (or just became) over the failed-attempt cap.
        """
        req_id = request_id_ctx.get("")
        if await self.rate_limiter.is_rate_limited(world_name, subject):
            audit.info("action=shared_secret world=%s success=false reason=rate_limited request_id=%s", world_name, req_id)
            raise RateLimitedError(world_name)

        if _verify_secret(plain_secret, hashed_secret):
            await self.rate_limiter.clear_attempts(world_name, subject)
            audit.info("action=shared_secret world=%s success=true request_id=%s", world_name, req_id)
            return True

        result = await self.rate_limiter.record_failed_attempt(world_name, subject)
        if result.rate_limited:
            audit.info("action=shared_secret world=%s success=false reason=rate_limited request_id=%s", world_name, req_id)
            raise RateLimitedError(world_name)
        audit.info("action=shared_secret world=%s success=false reason=invalid request_id=%s", world_name, req_id)
        return False


def get_shared_secret_guard(request: Request) -> SharedSecretGuard:
    """Dependency: the guard built at startup."""
    return request.app.state.shared_secret_guard
