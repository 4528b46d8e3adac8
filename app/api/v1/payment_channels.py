#app/api/v1/payment_channels.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.api.v1.presenters import channel_out, money
from app.db.session import get_db
from app.ledger.client import LedgerClient, get_ledger_client
from app.models.enums import ChannelStatus
from app.schemas.channels import (
    ChannelIdAssignRequest,
    ChannelListResponse,
    ChannelOut,
    ChannelRegisterRequest,
    CloseConfirmRequest,
    CloseConfirmResponse,
    CloseProposeRequest,
    CloseProposeResponse,
    CreateTemplateRequest,
)
from app.services.channel_service import ChannelService
from app.services.closure_service import ClosureService

router = APIRouter(prefix="/payment-channels")


def _rid(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


# ─────────────────────────────────────────────
# RECORD STORE
# ─────────────────────────────────────────────


@router.post("", response_model=ChannelOut, status_code=201)
def register_channel(
    payload: ChannelRegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    ch = ChannelService().register_channel(
        db,
        organization_wallet=payload.organizationWalletAddress,
        worker_wallet=payload.workerWalletAddress,
        worker_name=payload.workerName,
        job_name=payload.jobName,
        hourly_rate=payload.hourlyRate,
        funding_amount=payload.fundingAmount,
        channel_id=payload.channelId,
        settle_delay_seconds=payload.settleDelaySeconds,
        max_daily_hours=payload.maxDailyHours,
        request_id=_rid(request),
    )
    return channel_out(ch)


@router.post("/template")
def create_channel_template(payload: CreateTemplateRequest):
    """Unsigned PaymentChannelCreate for the organization's wallet."""
    tx = ChannelService().create_template(
        organization_wallet=payload.organizationWalletAddress,
        worker_wallet=payload.workerWalletAddress,
        funding_amount=payload.fundingAmount,
        settle_delay_seconds=payload.settleDelaySeconds,
        cancel_after=payload.cancelAfter,
    )
    return {"transaction": tx}


@router.put("/{recordId}/channel-id", response_model=ChannelOut)
def assign_channel_id(
    recordId: uuid.UUID,
    payload: ChannelIdAssignRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    ch = ChannelService().assign_channel_id(
        db,
        local_id=recordId,
        channel_id=payload.channelId,
        request_id=_rid(request),
    )
    return channel_out(ch)


@router.get("/organization/{walletAddress}", response_model=ChannelListResponse)
def list_organization_channels(
    walletAddress: str,
    status: Optional[ChannelStatus] = Query(default=None),
    db: Session = Depends(get_db),
):
    rows = ChannelService().list_organization_channels(
        db, walletAddress, status.value if status else None
    )
    return {"channels": [channel_out(c) for c in rows], "count": len(rows)}


@router.get("/worker/{walletAddress}", response_model=ChannelListResponse)
def list_worker_channels(walletAddress: str, db: Session = Depends(get_db)):
    rows = ChannelService().list_worker_channels(db, walletAddress)
    return {"channels": [channel_out(c) for c in rows], "count": len(rows)}


@router.get("/{channelRef}", response_model=ChannelOut)
def get_channel(channelRef: str, db: Session = Depends(get_db)):
    return channel_out(ChannelService().resolve(db, channelRef))


# ─────────────────────────────────────────────
# CLOSURE
# ─────────────────────────────────────────────


@router.post("/{channelId}/close", response_model=CloseProposeResponse)
def propose_closure(
    channelId: str,
    payload: CloseProposeRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Phase A. Locks the channel in closing and returns the claim template.
    An unpaid balance needs forceClose=true.
    """
    out = ClosureService().propose_closure(
        db,
        channel_id=channelId,
        caller_wallet=payload.walletAddress,
        force_close=payload.forceClose,
        request_id=_rid(request),
    )
    return {
        "channel": channel_out(out["channel"]),
        "callerRole": out["callerRole"],
        "balanceToWorker": money(out["balanceToWorker"]),
        "escrowReturn": money(out["escrowReturn"]),
        "transaction": out["transaction"],
    }


@router.post("/{channelId}/close/confirm", response_model=CloseConfirmResponse)
def confirm_closure(
    channelId: str,
    payload: CloseConfirmRequest,
    request: Request,
    db: Session = Depends(get_db),
    ledger: LedgerClient = Depends(get_ledger_client),
):
    """Phase B. The outcome comes from the ledger, not from the caller."""
    out = ClosureService().confirm_closure(
        db,
        ledger,
        channel_id=channelId,
        caller_wallet=payload.walletAddress,
        tx_hash=payload.txHash,
        request_id=_rid(request),
    )
    return {
        "channel": channel_out(out["channel"]),
        "callerRole": out["callerRole"],
        "outcome": out["outcome"],
        "paidOut": money(out.get("paidOut")),
        "alreadyConfirmed": out.get("alreadyConfirmed", False),
    }
