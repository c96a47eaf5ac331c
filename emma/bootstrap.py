# emma/bootstrap.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from emma.core.config import settings
from emma.core.exceptions import ApprovalRequestError, ExecutionBlockedError, InputValidationError
from emma.core.logging import setup_logging
from emma.api.router import api_router

APPROVAL_ERROR_STATUS = {
    "not_found": 404,
    "closed": 409,
    "expired": 409,
    "invalid": 422,
}


def create_app() -> FastAPI:
    setup_logging()

    app = FastAPI(title=settings.app_name)

    # -------------------------
    # Middleware
    # -------------------------
    origins = [o.strip() for o in settings.cors_allow_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins if origins else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------
    # Error mapping
    # -------------------------
    @app.exception_handler(ApprovalRequestError)
    def approval_error(request: Request, exc: ApprovalRequestError):
        return JSONResponse(
            status_code=APPROVAL_ERROR_STATUS.get(exc.code, 422),
            content={"detail": exc.message, "code": exc.code, "request_id": exc.request_id},
        )

    @app.exception_handler(ExecutionBlockedError)
    def execution_blocked(request: Request, exc: ExecutionBlockedError):
        return JSONResponse(
            status_code=409,
            content={"detail": exc.message, "action_id": exc.action_id},
        )

    @app.exception_handler(InputValidationError)
    def input_error(request: Request, exc: InputValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": exc.message, "index": exc.index, "action_id": exc.action_id},
        )

    # -------------------------
    # Routers
    # -------------------------
    app.include_router(api_router, prefix=settings.api_prefix)

    # -------------------------
    # Health
    # -------------------------
    @app.get("/health/live", tags=["health"])
    def live():
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    def ready():
        ready = getattr(app.state, "orchestrator", None) is not None
        return {"status": "ready" if ready else "degraded"}

    @app.get("/", tags=["root"])
    def root():
        return {
            "status": "ok",
            "service": settings.app_name,
            "api_prefix": settings.api_prefix,
        }

    return app
