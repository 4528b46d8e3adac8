from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.v1.presenters import channel_out
from app.db.session import get_db
from app.ledger.client import LedgerClient, get_ledger_client
from app.schemas.channels import ChannelOut
from app.schemas.reconciliation import (
    ChannelSyncResponse,
    ExpiredClosuresResponse,
    StaleBalanceListResponse,
    SyncAllResponse,
)
from app.services.reconciler_service import ReconcilerService

router = APIRouter(prefix="/reconciliation")


def _rid(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


@router.post("/organizations/{walletAddress}/sync-all", response_model=SyncAllResponse)
def sync_all_channels(
    walletAddress: str,
    request: Request,
    db: Session = Depends(get_db),
    ledger: LedgerClient = Depends(get_ledger_client),
):
    return ReconcilerService().sync_all(
        db, ledger, organization_wallet=walletAddress, request_id=_rid(request)
    )


@router.post("/channels/{channelId}/sync", response_model=ChannelSyncResponse)
def sync_channel(
    channelId: str,
    request: Request,
    db: Session = Depends(get_db),
    ledger: LedgerClient = Depends(get_ledger_client),
):
    out = ReconcilerService().sync_channel(db, ledger, channel_id=channelId, request_id=_rid(request))
    return {"channel": channel_out(out["channel"]), "outcome": out["outcome"], "onLedger": out["onLedger"]}


@router.get("/stale-balances", response_model=StaleBalanceListResponse)
def list_stale_balances(db: Session = Depends(get_db)):
    rows = ReconcilerService().find_stale_balances(db)
    return {"channels": [channel_out(c) for c in rows], "count": len(rows)}


@router.post("/channels/{channelId}/correct-stale-balance", response_model=ChannelOut)
def correct_stale_balance(
    channelId: str,
    request: Request,
    db: Session = Depends(get_db),
    ledger: LedgerClient = Depends(get_ledger_client),
):
    ch = ReconcilerService().correct_stale_balance(
        db, ledger, channel_id=channelId, request_id=_rid(request)
    )
    return channel_out(ch)


@router.post("/expired-closures", response_model=ExpiredClosuresResponse)
def reconcile_expired_closures(
    request: Request,
    db: Session = Depends(get_db),
    ledger: LedgerClient = Depends(get_ledger_client),
):
    return ReconcilerService().reconcile_expired_closures(db, ledger, request_id=_rid(request))
