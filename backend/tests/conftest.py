"""
Test fixtures - in-memory SQLite database, mocked object storage and an
HTTP client with the current user swapped per test.
"""
import uuid
from dataclasses import dataclass, field

import httpx
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from taskflow.api.v1.auth import (
    AuthenticatedUser,
    get_current_user,
    get_service_role,
    get_storage,
)
from taskflow.db.base import Base
from taskflow.db.session import get_db_session
from taskflow.main import app
from taskflow.models import (
    Department,
    Project,
    ProjectDepartment,
    UserInfo,
    UserRole,
)
from taskflow.services.notification import NotificationDispatcher
from taskflow.services.service_role import ServiceRole
from taskflow.services.storage import StorageClient
from taskflow.services.task import TaskService

STORAGE_URL = "http://storage.test/storage/v1"


@dataclass
class FakeStorage:
    """Records storage requests; paths listed in ``fail_uploads`` get a 500."""

    requests: list[httpx.Request] = field(default_factory=list)
    fail_uploads: bool = False
    fail_removes: bool = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and self.fail_uploads:
            return httpx.Response(500, json={"message": "upload exploded"})
        if request.method == "DELETE" and self.fail_removes:
            return httpx.Response(500, json={"message": "remove exploded"})
        return httpx.Response(200, json={"Key": request.url.path})

    @property
    def uploads(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    @property
    def removes(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "DELETE"]


@pytest_asyncio.fixture()
async def db_session():
    """Fresh in-memory SQLite database per test, with working SAVEPOINTs."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's implicit transaction handling breaks SAVEPOINT
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture()
async def seed_data(db_session):
    """Departments Engineering > Backend > API plus Sales, and one user per role.

    Projects: Alpha (Backend), Beta (Sales), Legacy (Engineering, archived).
    """
    engineering = Department(id=1, name="Engineering")
    backend = Department(id=2, name="Backend", parent_department_id=1)
    api = Department(id=3, name="API", parent_department_id=2)
    sales = Department(id=4, name="Sales")
    db_session.add_all([engineering, backend, api, sales])
    await db_session.flush()

    manager = UserInfo(id=uuid.uuid4(), first_name="Maya", last_name="Lim", department_id=1)
    staff = UserInfo(id=uuid.uuid4(), first_name="Sam", last_name="Tan", department_id=2)
    teammate = UserInfo(id=uuid.uuid4(), first_name="Tara", last_name="Ng", department_id=2)
    admin = UserInfo(id=uuid.uuid4(), first_name="Ada", last_name="Koh", department_id=4)
    outsider = UserInfo(id=uuid.uuid4(), first_name="Otto", last_name="Ong", department_id=None)
    db_session.add_all([manager, staff, teammate, admin, outsider])
    await db_session.flush()

    db_session.add_all(
        [
            UserRole(user_id=manager.id, role="manager"),
            UserRole(user_id=manager.id, role="staff"),
            UserRole(user_id=staff.id, role="staff"),
            UserRole(user_id=teammate.id, role="staff"),
            UserRole(user_id=admin.id, role="admin"),
        ]
    )

    alpha = Project(id=1, name="Alpha")
    beta = Project(id=2, name="Beta")
    legacy = Project(id=3, name="Legacy", is_archived=True)
    db_session.add_all([alpha, beta, legacy])
    await db_session.flush()

    db_session.add_all(
        [
            ProjectDepartment(project_id=1, department_id=2),
            ProjectDepartment(project_id=2, department_id=4),
            ProjectDepartment(project_id=3, department_id=1),
        ]
    )
    await db_session.commit()

    return {
        "manager": manager,
        "staff": staff,
        "teammate": teammate,
        "admin": admin,
        "outsider": outsider,
        "alpha": alpha,
        "beta": beta,
        "legacy": legacy,
    }


@pytest_asyncio.fixture()
async def make_users(db_session):
    """Factory for extra staff users in the Backend department."""

    async def _make(count: int) -> list[UserInfo]:
        users = [
            UserInfo(id=uuid.uuid4(), first_name=f"User{i}", last_name="Extra", department_id=2)
            for i in range(count)
        ]
        db_session.add_all(users)
        await db_session.commit()
        return users

    return _make


@pytest_asyncio.fixture()
def service_role():
    return ServiceRole(
        key=SecretStr("service-role-test-key"),
        storage_url=STORAGE_URL,
        bucket="task-attachments",
        timeout=5.0,
    )


@pytest_asyncio.fixture()
def fake_storage():
    return FakeStorage()


@pytest_asyncio.fixture()
def storage(service_role, fake_storage):
    return StorageClient(service_role, transport=httpx.MockTransport(fake_storage.handler))


@pytest_asyncio.fixture()
def task_service(db_session, service_role, storage):
    return TaskService(
        db_session,
        service_role,
        storage=storage,
        dispatcher=NotificationDispatcher(db_session, service_role),
    )


@dataclass
class ActingUser:
    """The user the test client authenticates as; tests reassign ``id``."""

    id: uuid.UUID | None = None


@pytest_asyncio.fixture()
async def acting_user(seed_data):
    return ActingUser(id=seed_data["staff"].id)


def _override_session(db_session):
    async def override_get_db_session():
        yield db_session

    return override_get_db_session


@pytest_asyncio.fixture()
async def client(db_session, seed_data, acting_user, service_role, storage):
    """HTTP client bound to the app, authenticated as ``acting_user``."""
    app.dependency_overrides[get_db_session] = _override_session(db_session)
    app.dependency_overrides[get_current_user] = lambda: AuthenticatedUser(id=acting_user.id)
    app.dependency_overrides[get_service_role] = lambda: service_role
    app.dependency_overrides[get_storage] = lambda: storage

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauth_client(db_session):
    """HTTP client without credentials."""
    app.dependency_overrides[get_db_session] = _override_session(db_session)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
