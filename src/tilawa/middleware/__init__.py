"""HTTP middleware for the rewards API.

Stack, outermost first:

    CORS -> request id -> rate limiter -> routes

The app's web build calls from a browser origin, so a throttled
lesson sync must still carry CORS headers or the client sees a network error
instead of a 429 it can back off from. The request id sits outside the
limiter so throttled requests are logged with an id too, and the same id is
bound when a ``reward_credit_failed`` event is written further in.
"""

from fastapi import FastAPI

from tilawa.config import Settings
from tilawa.middleware.cors import setup_cors
from tilawa.middleware.error_handler import setup_error_handlers
from tilawa.middleware.logging import setup_logging
from tilawa.middleware.rate_limit import RateLimitMiddleware
from tilawa.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, exception handlers and the middleware stack."""
    setup_logging(settings)
    setup_error_handlers(app)

    # add_middleware wraps the current stack, so innermost goes first
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
