import uvicorn
from fastapi import FastAPI

from trialgate.api.routes.accounts import router as accounts_router
from trialgate.api.routes.health import router as health_router
from trialgate.api.routes.internal_security import router as internal_security_router
from trialgate.api.routes.payment_webhook import router as payment_webhook_router
from trialgate.core.config import get_settings
from trialgate.core.logging import configure_logging


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Trialgate Access API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.include_router(health_router)
    app.include_router(accounts_router)
    app.include_router(payment_webhook_router)
    app.include_router(internal_security_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "trialgate.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
