import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .db import get_store
from .errors import install_error_handlers
from .logging import setup_logging, RequestIdMiddleware, structlog
from .auth.router import router as auth_router
from .routes.jobs import router as jobs_router
from .routes.factions import router as factions_router
from .routes.pilots import router as pilots_router
from .routes.manna import router as manna_router
from .routes.facilities import router as facilities_router
from .routes.reserves import router as reserves_router
from .routes.settings import router as settings_router
from .routes.emblems import router as emblems_router
from .routes.events import router as events_router
from .services.seed import initialize_store


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    install_error_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(jobs_router)
    app.include_router(factions_router)
    app.include_router(pilots_router)
    app.include_router(manna_router)
    app.include_router(facilities_router)
    app.include_router(reserves_router)
    app.include_router(settings_router)
    app.include_router(emblems_router)
    app.include_router(events_router)

    # Emblem files, referenced by name from jobs and factions
    os.makedirs(settings.emblem_dir, exist_ok=True)
    app.mount("/logo_art", StaticFiles(directory=settings.emblem_dir), name="logo_art")

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health", response_class=PlainTextResponse, include_in_schema=False)
    def health():
        # Uptime probes only; never touches the store
        return "OK"

    @app.on_event("startup")
    def _startup():
        log = structlog.get_logger("mercboard.startup")
        store = get_store()
        initialize_store(store)
        log.info("startup_complete", storage=settings.storage_provider, data_dir=settings.data_dir)

    return app


app = create_app()
