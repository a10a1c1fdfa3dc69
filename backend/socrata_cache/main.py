from fastapi import FastAPI

from .core.config import settings
from .core.db import SessionLocal
from .core.init_db import init_db
from .core.logger import get_logger
from .api.routes_datasets import router as datasets_router
from .jobs.scheduler import build_scheduler
from .models.resource import load_cache_config
from .services.webhook_service import WebhookService

logger = get_logger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0"
    )
    app.state.scheduler = None
    app.state.notifier = None

    @app.on_event("startup")
    def on_startup():
        init_db()

        cache_config = load_cache_config(settings.CONFIG_FILE)
        logger.info(
            "Loaded configuration",
            extra={
                "base_url": cache_config.base_url,
                "resource_count": len(cache_config.resources),
                "retention_size_gb": cache_config.retention_size,
                "retention_days": cache_config.retention_days,
            },
        )

        if not settings.SCHEDULER_ENABLED:
            logger.info("Scheduler disabled")
            return

        app.state.notifier = WebhookService(cache_config.webhook_url, timeout=settings.HTTP_TIMEOUT_SECONDS)
        app.state.scheduler = build_scheduler(settings, cache_config, SessionLocal, notifier=app.state.notifier)
        app.state.scheduler.start()

    @app.on_event("shutdown")
    def on_shutdown():
        if app.state.scheduler is not None:
            app.state.scheduler.stop()
        if app.state.notifier is not None:
            app.state.notifier.shutdown()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # Include datasets API routes
    app.include_router(datasets_router)

    return app


app = create_app()
