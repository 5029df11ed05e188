import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .db import close_client, create_indexes, get_db
from .dependencies import Services, build_services
from .errors import register_exception_handlers
from .groups import router as groups_router
from .logging_config import setup_logging
from .messages import router as messages_router
from .notifications import PushSink
from .realtime.session import router as ws_router

logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None, push_sink: Optional[PushSink] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        owns_db = app.state.services is None
        if owns_db:
            db = get_db()
            create_indexes(db)
            app.state.services = build_services(db, push_sink)
        current: Services = app.state.services
        if config.JWT_SECRET == config.DEV_JWT_SECRET:
            logger.warning("JWT_SECRET not set, using the development secret")
        current.presence.start()
        logger.info("chat core started")
        try:
            yield
        finally:
            current.presence.shutdown()
            current.hub.close_all()
            if owns_db:
                close_client()
            logger.info("chat core stopped")

    app = FastAPI(title="Soirée Chat Backend", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ALLOW_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )
    register_exception_handlers(app)

    @app.get("/health")
    def health():
        return {"ok": True}

    app.include_router(messages_router)
    app.include_router(groups_router)
    app.include_router(ws_router)
    return app


app = create_app()
