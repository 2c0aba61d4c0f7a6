"""Shared test fixtures: in-memory SQLite wired into the FastAPI app, mock AI, no real email."""

import os
import tempfile

# Must be set before procureflow modules read them at import time.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="procureflow-uploads-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from procureflow.database import get_db
from procureflow.main import app
from procureflow.models import RFP, RFPStatus, Vendor, Proposal
from procureflow.models.base import Base


@pytest.fixture(autouse=True)
def offline_providers(monkeypatch):
    """Force the deterministic AI fallback and disable email delivery."""
    monkeypatch.delenv("OLLAMA_BASE_URL", raising=False)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def vendor(db_session):
    v = Vendor(name="TechSolutions Inc.", email="vendor.techsolutions@example.com", company="TechSolutions")
    db_session.add(v)
    db_session.commit()
    db_session.refresh(v)
    return v


@pytest.fixture
def second_vendor(db_session):
    v = Vendor(name="Office Supply Co.", email="vendor.officesupply@example.com", company="OfficeSupply")
    db_session.add(v)
    db_session.commit()
    db_session.refresh(v)
    return v


@pytest.fixture
def rfp(db_session):
    r = RFP(
        title="Office Equipment Procurement",
        description="Procurement for 20 laptops and 15 monitors for the new regional office.",
        budget=50000.0,
        requirements={
            "title": "Office Equipment Procurement",
            "required_items": [
                {"name": "Laptop", "quantity": 20, "specifications": ["16GB RAM"]},
                {"name": "Monitor", "quantity": 15, "specifications": ["27-inch"]},
            ],
            "payment_terms": "Net 30",
            "warranty": "1 year minimum",
        },
        status=RFPStatus.SENT,
    )
    db_session.add(r)
    db_session.commit()
    db_session.refresh(r)
    return r


@pytest.fixture
def make_proposal(db_session):
    def _make(rfp, vendor, pricing=None, terms=None, attachments=None, ai_score=80.0, raw_email="Quote attached."):
        p = Proposal(
            rfp_id=rfp.id,
            vendor_id=vendor.id,
            raw_email=raw_email,
            pricing=pricing or {},
            terms=terms or {},
            attachments=attachments or [],
            ai_score=ai_score,
            ai_summary="Summary.",
        )
        db_session.add(p)
        db_session.commit()
        db_session.refresh(p)
        return p

    return _make
