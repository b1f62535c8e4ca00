"""FastAPI application factory for the metering API."""
from __future__ import annotations

import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .app.routes.billing import router as billing_router
from .app.routes.usage import router as usage_router
from .app_context import AppContext, build_app_context
from .config import MeteringConfig, load_config

logger = logging.getLogger("metering")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    config: Optional[MeteringConfig] = None,
    context: Optional[AppContext] = None,
) -> FastAPI:
    """Build the API. A prebuilt ``context`` skips store and provider setup."""

    if config is None:
        config = context.config if context is not None else load_config()

    app = FastAPI(title="Usage Metering API")
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(usage_router)
    app.include_router(billing_router)

    if context is not None:
        app.state.context = context
    elif config.usage_store == "memory":
        logger.warning("USAGE_STORE=memory: usage counters are lost on restart")
        app.state.context = build_app_context(config)
    else:

        @app.on_event("startup")
        async def setup_store() -> None:
            from .app.entitlements.repository import PostgresEntitlementStore, create_store_pool

            pool = await create_store_pool(
                config.database.asyncpg_kwargs(),
                connect_timeout=config.database.connect_timeout,
            )
            app.state.context = build_app_context(
                config,
                store=PostgresEntitlementStore(pool),
                pool=pool,
            )
            logger.info("Connected usage store to %s:%s", config.database.host, config.database.port)

        @app.on_event("shutdown")
        async def teardown_store() -> None:
            context = getattr(app.state, "context", None)
            pool = getattr(context, "pool", None)
            if pool is not None:
                await pool.close()

    return app


def build_default_app() -> FastAPI:
    load_dotenv()
    config = load_config()
    _configure_logging(config.log_level)
    return create_app(config)


# run: uvicorn metering.main:build_default_app --factory --host 127.0.0.1 --port 8000 --reload
