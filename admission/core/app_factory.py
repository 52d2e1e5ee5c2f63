"""Application factory for the admission-control API.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build isolated app instances.
"""

from __future__ import annotations

from fastapi import FastAPI

from admission.api.routes import admission_router, health_router
from admission.core.config import settings
from admission.core.exception_handlers import setup_exception_handlers
from admission.core.logging import configure_logging
from admission.core.middleware import request_id_middleware


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Admission Control API",
        description=(
            "Fixed-window rate limiting with burst protection for login, "
            "registration and public API calls. Decisions are scoped per "
            "identifier, per user and action, or per client IP; denied guarded "
            "requests receive HTTP 429 with a Retry-After header."
        ),
        version="0.1.0",
        debug=settings.app.debug,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(admission_router, prefix="/v1")
    app.include_router(health_router)

    return app
