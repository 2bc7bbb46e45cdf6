"""
FastAPI application wiring.

Builds the gateways and the DirectoryController from configuration, loads
the directory once at startup and exposes the store endpoints plus
Prometheus metrics.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from src.api.stores import router as stores_router
from src.config.settings import DirectoryConfig
from src.directory.controller import DirectoryController
from src.directory.notifications import Notifier
from src.gateways.base import CallDispatchGateway, RecordStoreGateway
from src.gateways.call_dispatch import HttpCallDispatcher
from src.gateways.memory import InMemoryRecordStore
from src.gateways.postgrest import PostgrestRecordStore

logger = structlog.get_logger(__name__)


def build_record_store(config: DirectoryConfig) -> RecordStoreGateway:
    rs = config.record_store
    if rs.backend == "postgrest":
        return PostgrestRecordStore(rs.url, api_key=rs.api_key, table=rs.table, timeout_ms=rs.timeout_ms)
    logger.warning("Using in-memory record store; data is lost on restart")
    return InMemoryRecordStore()


def build_dispatcher(config: DirectoryConfig) -> CallDispatchGateway:
    return HttpCallDispatcher(config.call_dispatch.url, timeout_ms=config.call_dispatch.timeout_ms)


def build_controller(config: DirectoryConfig, notifier: Optional[Notifier] = None) -> DirectoryController:
    return DirectoryController(
        build_record_store(config),
        build_dispatcher(config),
        notifier=notifier,
        max_concurrent_calls=config.call_all.max_concurrent,
        mark_only_successful=config.call_all.mark_only_successful,
    )


def create_app(config: Optional[DirectoryConfig] = None,
               controller: Optional[DirectoryController] = None) -> FastAPI:
    config = config or DirectoryConfig()
    controller = controller or build_controller(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        result = await controller.load_all()
        if not result.ok:
            # Start anyway; POST /api/stores/reload retries the load.
            logger.warning("Initial store load failed", error=result.message)
        yield

    app = FastAPI(title="Store Call Directory", lifespan=lifespan)
    app.state.controller = controller
    app.state.config = config
    app.include_router(stores_router)
    app.mount("/metrics", make_asgi_app())
    return app
