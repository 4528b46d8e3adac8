import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import app.models  # noqa

from app.db.base import Base
from app.db.session import get_db
from app.ledger.client import get_ledger_client
from app.models.organization import Organization
from app.services.channel_service import ChannelService
from app.tests.support import CHANNEL_ID, ORG_WALLET, WORKER_WALLET, Clock, FakeLedger


@pytest.fixture(scope="function")
def db():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def org(db):
    o = Organization(name="Harbor Relief", wallet_address=ORG_WALLET)
    db.add(o)
    db.commit()
    db.refresh(o)
    return o


@pytest.fixture
def make_channel(db, org):
    def _make(
        *,
        channel_id: Optional[str] = CHANNEL_ID,
        escrow: str = "100",
        rate: str = "10",
        max_daily_hours: Optional[str] = None,
        balance: Optional[str] = None,
        status: Optional[str] = None,
        worker_wallet: str = WORKER_WALLET,
    ):
        ch = ChannelService().register_channel(
            db,
            organization_wallet=org.wallet_address,
            worker_wallet=worker_wallet,
            worker_name="Ana Worker",
            job_name="Shelter Intake",
            hourly_rate=Decimal(rate),
            funding_amount=Decimal(escrow),
            channel_id=channel_id,
            settle_delay_seconds=3600,
            max_daily_hours=Decimal(max_daily_hours) if max_daily_hours else None,
        )
        if balance is not None or status is not None:
            if balance is not None:
                ch.accumulated_balance = Decimal(balance)
            if status is not None:
                ch.status = status
            db.commit()
            db.refresh(ch)
        return ch

    return _make


@pytest.fixture
def client(db, ledger):
    from app.main import create_app

    app = create_app()

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_ledger_client] = lambda: ledger
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
