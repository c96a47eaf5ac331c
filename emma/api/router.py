from fastapi import APIRouter

from emma.api.validation import router as validation_router
from emma.api.approvals import router as approvals_router
from emma.api.audit import router as audit_router

api_router = APIRouter()

# -------------------------------------------------
# validation gate
# -------------------------------------------------
api_router.include_router(
    validation_router,
    prefix="/validation",
    tags=["validation"],
)

# -------------------------------------------------
# human-in-the-loop
# -------------------------------------------------
api_router.include_router(
    approvals_router,
    prefix="/approvals",
    tags=["approvals"],
)

# -------------------------------------------------
# audit / timeline
# -------------------------------------------------
api_router.include_router(
    audit_router,
    prefix="/audit",
    tags=["audit"],
)
