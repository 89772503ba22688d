import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .errors import register_exception_handlers
from .logging import setup_logging, get_logger, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.users import router as users_router
from .routes.customers import router as customers_router
from .routes.jobs import router as jobs_router
from .routes.routes import router as routes_router
from .routes.logs import router as logs_router
from .routes.files import router as files_router
from .routes.dashboard import router as dashboard_router
from .routes.locations import router as locations_router
from .routes.maps import router as maps_router
from .routes.realtime import router as realtime_router
from .routes.health import router as health_router


log = get_logger("swifttiger.main")


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app)

    # Routers
    for router in (
        auth_router,
        users_router,
        customers_router,
        jobs_router,
        routes_router,
        logs_router,
        files_router,
        dashboard_router,
        locations_router,
        maps_router,
        realtime_router,
        health_router,
    ):
        app.include_router(router, prefix=settings.api_prefix)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        log.info("startup", environment=settings.environment, api_prefix=settings.api_prefix)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("tables_verified", count=len(Base.metadata.tables))
        if not settings.google_maps_api_key:
            log.warning("maps_key_missing", detail="route distances use the haversine estimate")

    return app


app = create_app()
