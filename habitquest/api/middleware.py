"""CORS and per-caller rate limiting"""
import logging
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from habitquest import config
from habitquest.api.auth import decode_token
from habitquest.exceptions import HabitQuestError

logger = logging.getLogger(__name__)


def rate_limit_key(request: Request) -> str:
    """Bucket requests by authenticated user, falling back to client IP"""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            return f"user:{decode_token(token).uid}"
        except HabitQuestError as e:
            # Rejected again by the route; count it against the IP meanwhile
            logger.debug(f"Rate limiting by IP: {e.message}")
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=rate_limit_key)


def setup_cors(app):
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )
    logger.info(f"CORS origins: {config.CORS_ORIGINS}")


def setup_rate_limiting(app):
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info(f"Rate limits: {config.RATE_LIMIT} per caller, insights {config.INSIGHT_RATE_LIMIT}")
