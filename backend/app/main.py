import logging.config

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api.metrics import router as metrics_router
from app.api.ws import router as ws_router
from app.config import Settings, get_settings
from poker.realtime.managers import build_realtime, shutdown_realtime, startup_realtime


def build_logging_config(level: str = "INFO") -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
            }
        },
        "root": {
            "handlers": ["default"],
            "level": "INFO",
        },
        "loggers": {
            "poker.realtime": {
                "level": level.upper(),
            }
        },
    }


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API with its own, empty realtime state."""

    settings = settings or get_settings()
    logging.config.dictConfig(build_logging_config(settings.log_level))

    app = FastAPI(title=settings.app_name, debug=settings.debug)
    app.state.settings = settings
    app.state.realtime = build_realtime(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.cors_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_origin_regex=settings.cors_allow_origin_regex,
    )

    @app.get("/health", tags=["system"])
    def health_check(request: Request) -> dict[str, object]:
        """Health check with a summary of the in-memory state."""
        return {
            "status": "ok",
            "environment": settings.environment,
            **request.app.state.realtime.summary(),
        }

    @app.on_event("startup")
    async def _startup() -> None:
        await startup_realtime(app.state.realtime)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await shutdown_realtime(app.state.realtime)

    app.include_router(ws_router)
    app.include_router(metrics_router)
    return app


app = create_app()
