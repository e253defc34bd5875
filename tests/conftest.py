import io
from datetime import timedelta
from types import SimpleNamespace
from typing import Dict, List, Optional

import httpx
import openai
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from casegen.core.database import get_database
from casegen.core.dependencies import (
    get_generation_client,
    get_image_processor,
    get_issue_source,
    get_session_store,
)
from casegen.core.scheduling import VirtualScheduler
from casegen.models.database import Base
from casegen.models.schemas import Issue, IssueAttachment, IssueLookup
from casegen.repositories.interfaces.issue_source import IIssueSource
from casegen.services.generation_client import GenerationClient
from casegen.services.image_processing import ImageProcessor
from casegen.services.image_session_store import ImageSessionStore

SAMPLE_MARKDOWN = """# Test Cases for PROJ-1: Login

Some introductory text the model likes to add.

### Test Case 1: Login with valid credentials
- **Priority**: High
- **Preconditions**: User account `qa@example.com` exists
- **Steps**:
  1. Open the login page
  2. Submit valid credentials
- **Expected Result**: Dashboard is shown

### Test Case 2: Login with wrong password
- **Priority**: Medium
- **Preconditions**: User account exists
- **Steps**:
  1. Open the login page
  2. Submit a wrong password
- **Expected Result**: An *error* message is shown

### Test Case 3: Password field is masked
- **Priority**: Low
- **Steps**:
  1. Type into the password field
- **Expected Result**: Characters are masked

---
"""


def completion(content: Optional[str], prompt_tokens: int = 1000, completion_tokens: int = 500):
    """Shape of an openai ChatCompletion as far as the client reads it"""
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


def connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))


def status_error(cls, status_code: int, message: str = "rejected"):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return cls(message, response=httpx.Response(status_code, request=request), body=None)


def png_bytes(size=(64, 48), mode="RGBA", color=(200, 30, 30, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeCompletions:
    """Stand-in for ``AsyncOpenAI().chat.completions``.

    Each call pops the next queued item; exceptions are raised, anything
    else is returned. An empty queue answers with ``default``.
    """

    def __init__(self):
        self.queue: List[object] = []
        self.calls: List[Dict] = []
        self.default = completion(SAMPLE_MARKDOWN)

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        item = self.queue.pop(0) if self.queue else self.default
        if isinstance(item, BaseException):
            raise item
        return item


class FakeOpenAI:
    def __init__(self):
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeIssueSource(IIssueSource):
    def __init__(self):
        self.issues: Dict[str, Issue] = {}
        self.configured = True

    def add(self, issue: Issue) -> None:
        self.issues[issue.key] = issue

    async def get_issue(self, issue_key: str) -> IssueLookup:
        issue = self.issues.get(issue_key)
        if issue is None:
            return IssueLookup(success=False, status_code=404, error=f"JIRA issue {issue_key} not found")
        return IssueLookup(success=True, issue=issue)

    def is_configured(self) -> bool:
        return self.configured


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def sleeps():
    return RecordingSleep()


@pytest.fixture
def generation_client(fake_openai, sleeps):
    return GenerationClient(
        client=fake_openai,
        max_retries=3,
        backoff_base_seconds=1.0,
        retry_all_errors=False,
        sleep=sleeps,
    )


@pytest.fixture
def issue_source():
    source = FakeIssueSource()
    source.add(Issue(
        key="PROJ-1",
        summary="Login",
        description="Users sign in with email and password.",
        acceptance_criteria="- Valid credentials open the dashboard",
        attachments=[IssueAttachment(filename="mock.png", mime_type="image/png", url="https://jira/mock.png")],
    ))
    return source


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def session_store(scheduler):
    store = ImageSessionStore(ttl=timedelta(minutes=30), sweep_interval=timedelta(minutes=10), scheduler=scheduler)
    yield store
    store.dispose()


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def image_processor(upload_dir):
    return ImageProcessor(upload_dir=str(upload_dir), max_size=(1920, 1080), quality=85)


@pytest.fixture
def test_client(db_session, issue_source, generation_client, session_store, image_processor):
    """Synchronous test client with every external dependency replaced"""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_database] = override_get_db
    app.dependency_overrides[get_issue_source] = lambda: issue_source
    app.dependency_overrides[get_generation_client] = lambda: generation_client
    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_image_processor] = lambda: image_processor
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
