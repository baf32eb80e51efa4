# src/PACE/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.routing import APIRoute
from sqlalchemy.exc import IntegrityError
from starlette.responses import JSONResponse

from PACE import __version__
from PACE.app_logger import configure_logging as setup_logging, get_logger
from PACE.api.deps import build_services
from PACE.api.routers import admin, attendance, groups, health, milestones, people, progress
from PACE.core.config import Settings, settings as default_settings
from PACE.db.session import build_engine, build_sessionmaker, translate_integrity_error
from PACE.errors import InternalError, PaceError
from PACE.services.notifications import MessagingGateway

log = get_logger("main")


def generate_unique_id(route: APIRoute) -> str:
    methods = "_".join(sorted((route.methods or []), key=str.lower)).lower()
    path = route.path_format.replace("/", "_").replace("{", "").replace("}", "").strip("_")
    tag = (route.tags[0] if route.tags else "default").lower().replace(" ", "_")
    return f"{tag}__{methods}__{path}"


def create_app(
    cfg: Optional[Settings] = None,
    *,
    gateway: Optional[MessagingGateway] = None,
    configure_logging: bool = True,
) -> FastAPI:
    cfg = cfg or default_settings
    if configure_logging:
        setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # DB engine/sessionmaker bound to THIS loop, unless a test already bound one
        owns_engine = getattr(app.state, "async_sessionmaker", None) is None
        if owns_engine:
            app.state.db_engine = build_engine(cfg.DATABASE_URL)
            app.state.async_sessionmaker = build_sessionmaker(app.state.db_engine)
        log.info("PACE %s started (attendance goal=%d)", __version__, cfg.ATTENDANCE_GOAL)
        try:
            yield
        finally:
            if owns_engine:
                await app.state.db_engine.dispose()
            log.info("PACE stopped")

    app = FastAPI(
        title=cfg.APP_NAME,
        version=__version__,
        lifespan=lifespan,
        generate_unique_id_function=generate_unique_id,
    )
    app.state.settings = cfg
    app.state.services = build_services(cfg, gateway)

    @app.exception_handler(PaceError)
    async def pace_error_handler(request: Request, exc: PaceError):
        if isinstance(exc, InternalError):
            log.error("internal error on %s %s", request.method, request.url.path, exc_info=exc.cause or exc)
        else:
            log.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        # anything that escaped a component boundary untranslated
        mapped = translate_integrity_error(exc)
        if isinstance(mapped, PaceError):
            return JSONResponse(status_code=mapped.status_code, content={"detail": mapped.to_detail()})
        log.exception("IntegrityError on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": InternalError().to_detail()})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": InternalError().to_detail()})

    for r in (health, milestones, progress, attendance, people, groups, admin):
        app.include_router(r.router)

    return app
