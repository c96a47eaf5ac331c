from typing import List

from fastapi import APIRouter, Depends, Query

from emma.dependencies import get_approval_service
from emma.schemas.approval import ApprovalRequest, ApprovalResponse
from emma.services.approval_service import ApprovalService

router = APIRouter(tags=["approvals"])


@router.get("/pending", response_model=List[ApprovalRequest])
def list_pending(
    tenant_id: str = Query(...),
    include_expired: bool = Query(False),
    approvals: ApprovalService = Depends(get_approval_service),
):
    return approvals.list_pending(tenant_id, include_expired=include_expired)


@router.post("/expire")
def expire_stale(approvals: ApprovalService = Depends(get_approval_service)):
    return {"expired": approvals.expire_stale()}


@router.get("/{request_id}", response_model=ApprovalRequest)
def get_request(
    request_id: str,
    approvals: ApprovalService = Depends(get_approval_service),
):
    return approvals.get(request_id)


@router.post("/{request_id}/respond", response_model=ApprovalRequest)
def respond(
    request_id: str,
    body: ApprovalResponse,
    approvals: ApprovalService = Depends(get_approval_service),
):
    return approvals.respond(request_id, body)
