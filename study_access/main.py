from uuid import uuid4

import structlog
import uvicorn
from fastapi import FastAPI, Request

from study_access.api.routes.billing_webhook import router as billing_webhook_router
from study_access.api.routes.email_webhook import router as email_webhook_router
from study_access.api.routes.health import router as health_router
from study_access.api.routes.internal_access_codes import router as internal_access_codes_router
from study_access.api.routes.internal_trial_sweep import router as internal_trial_sweep_router
from study_access.api.routes.parent_checkout import router as parent_checkout_router
from study_access.api.routes.payment_webhook import router as payment_webhook_router
from study_access.api.routes.user_access import router as user_access_router
from study_access.core.config import get_settings
from study_access.core.logging import configure_logging

REQUEST_ID_HEADER = "X-Request-ID"


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Study Access API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    @app.middleware("http")
    async def bind_request_id(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.include_router(health_router)
    app.include_router(user_access_router)
    app.include_router(parent_checkout_router)
    app.include_router(payment_webhook_router)
    app.include_router(billing_webhook_router)
    app.include_router(email_webhook_router)
    app.include_router(internal_access_codes_router)
    app.include_router(internal_trial_sweep_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "study_access.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
