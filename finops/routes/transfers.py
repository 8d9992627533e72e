"""ACH transfer submission, approval and execution endpoints."""

from typing import List

from fastapi import APIRouter, Depends, Request

from finops.models import (
    Actor,
    CreateTransferRequest,
    DecisionRequest,
    RetryRequest,
    TransferRequest,
)
from finops.routes.actor import get_actor
from finops.workflow.ach import ACHApprovalWorkflow

router = APIRouter(prefix="/api/ach")


def _get_workflow(request: Request) -> ACHApprovalWorkflow:
    """Retrieve the ACH workflow from application state."""
    return request.app.state.workflow


@router.post("/transfers", response_model=TransferRequest)
async def create_transfer(
    body: CreateTransferRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> TransferRequest:
    """Submit a transfer. Amounts over the approval threshold start Pending."""
    return await _get_workflow(request).create_transfer(
        actor,
        amount=body.amount,
        recipient_account_ref=body.recipient_account_ref,
        transfer_type=body.transfer_type,
        description=body.description,
        provider=body.provider,
    )


@router.get("/transfers/{transfer_id}", response_model=TransferRequest)
async def get_transfer(
    transfer_id: str,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> TransferRequest:
    return _get_workflow(request).get_status(actor.tenant_id, transfer_id)


@router.post("/transfers/{transfer_id}/approve", response_model=TransferRequest)
async def approve_transfer(
    transfer_id: str,
    body: DecisionRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> TransferRequest:
    """Approve at the next required level; the final approval executes."""
    return await _get_workflow(request).approve(actor, transfer_id, comments=body.comments)


@router.post("/transfers/{transfer_id}/reject", response_model=TransferRequest)
async def reject_transfer(
    transfer_id: str,
    body: DecisionRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> TransferRequest:
    return await _get_workflow(request).reject(actor, transfer_id, reason=body.comments)


@router.post("/transfers/{transfer_id}/execute", response_model=TransferRequest)
async def execute_transfer(
    transfer_id: str,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> TransferRequest:
    """Execute a transfer that needed no approval."""
    return await _get_workflow(request).execute(actor, transfer_id)


@router.post("/transfers/{transfer_id}/retry", response_model=TransferRequest)
async def retry_transfer(
    transfer_id: str,
    body: RetryRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> TransferRequest:
    """Re-execute a Failed transfer under the caller's idempotency key."""
    return await _get_workflow(request).retry(actor, transfer_id, body.idempotency_key)


@router.get("/approvals/pending", response_model=List[TransferRequest])
async def pending_approvals(
    request: Request,
    actor: Actor = Depends(get_actor),
) -> List[TransferRequest]:
    return _get_workflow(request).pending_approvals(actor)
