# emma/lifecycle.py
import logging
from fastapi import FastAPI

from emma.dependencies import init_services

logger = logging.getLogger(__name__)


def register_lifecycle(app: FastAPI) -> None:
    @app.on_event("startup")
    def on_startup() -> None:
        logger.info("Application startup begin")
        init_services(app)
        logger.info("Application startup completed")

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        logger.info("Application shutdown begin")

        orchestrator = getattr(app.state, "orchestrator", None)
        if orchestrator is not None:
            orchestrator.policy_engine.shutdown()

        logger.info("Application shutdown completed")
