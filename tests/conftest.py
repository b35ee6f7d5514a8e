"""Shared fixtures: in-memory database, seeded users and a TEST project."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from issueflow_core import crud, models, schemas
from issueflow_core.models import Base


class RecordingPublisher:
    """Channel publisher that keeps every published event in memory."""

    def __init__(self):
        self.published = []

    def publish(self, channel, event):
        self.published.append((channel, event))

    def events_on(self, channel):
        return [event for published_channel, event in self.published if published_channel == channel]

    def kinds_on(self, channel):
        return [event.kind for event in self.events_on(channel)]


class FailingPublisher:
    """Channel publisher whose transport is down."""

    def __init__(self):
        self.attempts = 0

    def publish(self, channel, event):
        self.attempts += 1
        raise ConnectionError("channel transport unavailable")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def failing_publisher():
    return FailingPublisher()


@pytest.fixture
def owner(db):
    return crud.create_user(db, "olivia", "olivia@example.com", "Olivia Owner")


@pytest.fixture
def alice(db):
    return crud.create_user(db, "alice", "alice@example.com", "Alice Anders")


@pytest.fixture
def bob(db):
    return crud.create_user(db, "bob", "bob@example.com", "Bob Brown")


@pytest.fixture
def carol(db):
    return crud.create_user(db, "carol", "carol@example.com", "Carol Chen")


@pytest.fixture
def dave(db):
    return crud.create_user(db, "dave", "dave@example.com", "Dave Developer")


@pytest.fixture
def viewer(db):
    return crud.create_user(db, "victor", "victor@example.com", "Victor Viewer")


@pytest.fixture
def outsider(db):
    return crud.create_user(db, "oscar", "oscar@example.com", "Oscar Outsider")


@pytest.fixture
def project(db, owner, alice, bob, carol, dave, viewer):
    """Project TEST with the default workflow, four members and one viewer."""
    project = crud.create_project(db, "TEST", "Test Project", owner)
    for user in (alice, bob, carol, dave):
        crud.add_project_member(db, project, user, models.ProjectRole.MEMBER)
    crud.add_project_member(db, project, viewer, models.ProjectRole.VIEWER)
    return project


@pytest.fixture
def other_project(db, outsider):
    """A second project owned by someone outside TEST."""
    return crud.create_project(db, "OTHER", "Other Project", outsider)


@pytest.fixture
def states(project):
    """Workflow states of TEST by name."""
    return {state.name: state for state in project.workflow_states}


@pytest.fixture
def issue(db, project, alice):
    """An issue in TEST, reported by alice, sitting in Backlog."""
    return crud.create_issue(
        db,
        project.id,
        schemas.IssueCreate(title="Login page crashes", description="Steps to reproduce..."),
        alice,
    )


@pytest.fixture
def client(db, publisher):
    """TestClient bound to the test session and recording publisher."""
    from fastapi.testclient import TestClient

    from issueflow_core.api.dependencies import get_publisher
    from issueflow_core.api.main import app
    from issueflow_core.database import get_db

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_publisher] = lambda: publisher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
