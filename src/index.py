"""
Grades service application.

``create_app`` builds the FastAPI application. Collaborators that are not
injected (repository, metrics emitter, log shipper) are built from the
configuration during startup and released on shutdown. Startup failures
are fatal: the lifespan raises and the server does not start.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from src.config import Configuration, load_config
from src.logging_config import configure_logging, detach_shipper
from src.middleware.request_logging import LoggingMiddleware
from src.routes.grades import router as grades_router
from src.routes.system import router as system_router
from src.services.cloudwatch_logs import create_cloudwatch_sink
from src.services.grade_repository import GradeRepository
from src.services.log_shipper import BatchLogShipper
from src.services.metrics import create_metrics

logger = logging.getLogger(__name__)


def _build_shipper(config: Configuration) -> Optional[BatchLogShipper]:
    if not config.logs.enabled:
        logger.info("Remote log shipping disabled")
        return None
    sink = create_cloudwatch_sink(config.aws, create_stream=config.logs.create_stream)
    shipper = BatchLogShipper(
        sink,
        batch_size=config.logs.batch_size,
        flush_interval=config.logs.flush_interval,
    )
    logger.info(
        f"Log shipping to {config.aws.log_group}/{config.aws.log_stream}: "
        f"batch_size={config.logs.batch_size}, flush_interval={config.logs.flush_interval}s"
    )
    return shipper


def create_app(
    config: Optional[Configuration] = None,
    repository=None,
    metrics=None,
    shipper: Optional[BatchLogShipper] = None,
) -> FastAPI:
    """Build the application; injected collaborators are used as given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config or load_config()
        state = app.state
        state.config = cfg

        state.shipper = shipper if shipper is not None else _build_shipper(cfg)
        configure_logging(cfg.logs.level, state.shipper)
        logger.info("Initializing application")

        try:
            state.metrics = metrics if metrics is not None else create_metrics(cfg)
            if repository is not None:
                state.repository = repository
            else:
                state.repository = GradeRepository(cfg.db, metrics=state.metrics)
                state.repository.initialize_schema()
        except Exception:
            logger.error("Failed to initialize application", exc_info=True)
            if state.shipper is not None:
                detach_shipper(state.shipper)
                state.shipper.close()
            raise

        try:
            yield
        finally:
            logger.info("Shutting down application")
            state.repository.close()
            # Closed last so the shutdown logs above are shipped
            if state.shipper is not None:
                detach_shipper(state.shipper)
                state.shipper.close()

    app = FastAPI(title="Grades Service", version="1.0.0", lifespan=lifespan)
    app.add_middleware(LoggingMiddleware)
    app.include_router(system_router)
    app.include_router(grades_router)
    return app


app = create_app()
