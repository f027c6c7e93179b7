import json
import os
import tempfile
import time
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="faiportal-tests-"))
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["ANALYSIS_PROVIDER"] = "checklist"
os.environ["LOG_FILE"] = str(_TMP / "test.log")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

from faiportal.core.dependencies import get_analysis_provider  # noqa: E402
from faiportal.db.core import engine as db_engine, get_session, init_db  # noqa: E402
from faiportal.db.schema import (  # noqa: E402
    ActorRole, DocType, Submission, SubmissionStatus
)
from faiportal.main import app  # noqa: E402
from faiportal.models.auth import Actor  # noqa: E402
from faiportal.models.submission import DocumentUpload  # noqa: E402
from faiportal.services.analysis import AnalysisAdapter, AnalysisProvider  # noqa: E402
from faiportal.services.identity import IdentityService  # noqa: E402
from faiportal.services.repository import SubmissionRepository  # noqa: E402
from faiportal.services.requirements import is_mandatory, mandatory_types  # noqa: E402


APPROVED_PAYLOAD = {
    "overallVerdict": "APPROVED",
    "summary": "ok",
    "details": [
        {"docType": "Engineering Drawing", "result": "PASS", "notes": "Features ballooned"},
        {"docType": "FAI Report (Supplier)", "result": "PASS", "notes": "Within tolerance"},
    ],
}


# ==========================================
# FAKE ANALYSIS COLLABORATORS
# ==========================================

class StaticProvider(AnalysisProvider):
    """Returns a fixed payload and records every request it receives."""
    name = "static"

    def __init__(self, payload=None):
        self.payload = payload if payload is not None else APPROVED_PAYLOAD
        self.requests = []

    def analyze(self, request):
        self.requests.append(request)
        return self.payload


class FailingProvider(AnalysisProvider):
    name = "failing"

    def __init__(self, error=None):
        self.error = error or TimeoutError("analysis collaborator timed out")
        self.calls = 0

    def analyze(self, request):
        self.calls += 1
        raise self.error


class SlowProvider(AnalysisProvider):
    name = "slow"

    def __init__(self, delay=0.5):
        self.delay = delay

    def analyze(self, request):
        time.sleep(self.delay)
        return APPROVED_PAYLOAD


# ==========================================
# HELPERS
# ==========================================

def make_upload(doc_type, name=None, mime_type="application/pdf", content=b"%PDF-1.4 fake"):
    doc_type = DocType(doc_type)
    return DocumentUpload(
        id=f"doc-{doc_type.name.lower()}",
        type=doc_type,
        name=name or f"{doc_type.name.lower()}.pdf",
        mime_type=mime_type,
        last_modified=1700000000000,
        is_mandatory=is_mandatory(doc_type),
        content=content
    )


def mandatory_uploads():
    return [make_upload(t) for t in mandatory_types()]


def multipart_files(doc_types, mime_type="application/pdf", ext="pdf"):
    return [
        ("files", (f"{DocType(t).name.lower()}.{ext}", b"%PDF-1.4 fake", mime_type))
        for t in doc_types
    ]


def create_payload(doc_types, part_number="MOD-1", revision="01", **extra):
    body = {
        "part_number": part_number,
        "revision": revision,
        "doc_types": [DocType(t).value for t in doc_types],
    }
    body.update(extra)
    return {"payload": json.dumps(body)}


# ==========================================
# FIXTURES
# ==========================================

@pytest.fixture
def engine():
    SQLModel.metadata.drop_all(db_engine)
    init_db()
    yield db_engine
    SQLModel.metadata.drop_all(db_engine)


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def repository(session):
    return SubmissionRepository(session)


@pytest.fixture
def supplier():
    return Actor(user_id="S1", role=ActorRole.SUPPLIER, organization="ABC Manufacturing", name="John Supplier")


@pytest.fixture
def other_supplier():
    return Actor(user_id="S2", role=ActorRole.SUPPLIER, organization="Tech Components Ltd.", name="Alice Tech")


@pytest.fixture
def reviewer():
    return Actor(user_id="E1", role=ActorRole.IQA, organization="IQA", name="Sarah Inspector")


@pytest.fixture
def provider():
    return StaticProvider()


@pytest.fixture
def adapter_factory(engine):
    def _factory(provider, timeout_seconds=5.0):
        return AnalysisAdapter(
            provider=provider,
            session_factory=lambda: Session(engine),
            timeout_seconds=timeout_seconds
        )
    return _factory


@pytest.fixture
def make_submission(repository, supplier):
    """Inserts a submission directly in the given status, bypassing the gate."""
    counter = {"n": 0}

    def _make(status=SubmissionStatus.PENDING_AI, uploads=None, supplier_name=None, **fields):
        counter["n"] += 1
        submission = Submission(
            id=f"SUB-{counter['n']}",
            supplier_name=supplier_name or supplier.organization,
            part_number=fields.pop("part_number", "MOD-1"),
            revision=fields.pop("revision", "01"),
            status=status,
            **fields
        )
        return repository.add(
            submission,
            mandatory_uploads() if uploads is None else uploads,
            actor_role=ActorRole.SUPPLIER,
            actor_id=supplier.user_id
        )
    return _make


@pytest.fixture
def tokens(supplier, other_supplier, reviewer):
    identity = IdentityService()
    return {
        "supplier": identity.issue_token(supplier).access_token,
        "other_supplier": identity.issue_token(other_supplier).access_token,
        "iqa": identity.issue_token(reviewer).access_token,
    }


@pytest.fixture
def client(engine, provider):
    def override_get_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_analysis_provider] = lambda: provider
    yield TestClient(app)
    app.dependency_overrides.clear()
