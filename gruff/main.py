from fastapi import FastAPI

from gruff.api.v1 import api_router
from gruff.core.errors import register_exception_handlers
from gruff.core.health import APP_VERSION
from gruff.core.logging import configure_logging
from gruff.core.response_envelope import register_response_envelope
from gruff.events import register_event_handlers
from gruff.middlewares.request_context import RequestContextMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Gruff", version=APP_VERSION)
    register_exception_handlers(app)
    register_response_envelope(app)
    app.add_middleware(RequestContextMiddleware)
    app.include_router(api_router, prefix="/api/v1")
    register_event_handlers(app)
    return app


app = create_app()
