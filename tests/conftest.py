import os

# Select the test settings before anything imports config
os.environ["MODE"] = "test"

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Import the app and DB helpers from the project.
from main import app as fastapi_app
import db as project_db
import db_models  # ensure models are imported
from db_base import Base
from db_models.tenant import Tenant, TenantStatus
from db_models.client_business import ClientBusiness
from core import credential_store
from core.components import build_components
from core.deps import get_auth_components
from core.notifications import RecordingNotificationSink
from core.permissions import Role
from core.security import AuthConfig

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
DEFAULT_PASSWORD = "Secret123!"

_UNSET = object()


class FakeClock:
    """Controllable clock handed to every auth component."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        future=True,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    # Aligned to a 30 s TOTP step boundary
    return FakeClock(datetime(2026, 1, 15, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def notifier():
    return RecordingNotificationSink()


@pytest.fixture
def auth_config():
    return AuthConfig(
        access_secret="test-access-secret",
        refresh_secret="test-refresh-secret",
        backup_code_key="test-backup-code-key",
        bcrypt_rounds=4,
    )


@pytest.fixture
def auth(auth_config, clock, notifier):
    return build_components(auth_config, clock=clock, notifier=notifier)


@pytest.fixture
async def tenant(db_session):
    tenant = Tenant(
        name="Acme Storage",
        email="ops@acme.com",
        registration_status=TenantStatus.ACTIVE.value,
        is_active=True,
    )
    db_session.add(tenant)
    await db_session.commit()
    await db_session.refresh(tenant)
    return tenant


@pytest.fixture
async def other_tenant(db_session):
    tenant = Tenant(
        name="Northwind Warehousing",
        email="ops@northwind.com",
        registration_status=TenantStatus.ACTIVE.value,
        is_active=True,
    )
    db_session.add(tenant)
    await db_session.commit()
    await db_session.refresh(tenant)
    return tenant


@pytest.fixture
async def client_business(db_session, tenant):
    business = ClientBusiness(
        tenant_id=tenant.id,
        name="Bright Retail",
        client_code="BRT-001",
        is_active=True,
    )
    db_session.add(business)
    await db_session.commit()
    await db_session.refresh(business)
    return business


@pytest.fixture
def make_user(db_session, auth, tenant):
    """Factory for users. Tenant users land in ``tenant`` unless told otherwise."""

    async def _make(
        email: str = "alice@x.com",
        password: str = DEFAULT_PASSWORD,
        role: Role = Role.TENANT_STAFF,
        *,
        tenant_id=_UNSET,
        client_business_id: int | None = None,
        email_verified: bool = True,
        permission_overrides=None,
    ):
        if tenant_id is _UNSET:
            tenant_id = None if Role(role) == Role.PLATFORM_ADMIN else tenant.id
        return await credential_store.create_user(
            db_session,
            email=email,
            password_hash=auth.passwords.hash_sync(password),
            display_name=email.split("@")[0].title(),
            role=role,
            tenant_id=tenant_id,
            client_business_id=client_business_id,
            email_verified=email_verified,
            permission_overrides=permission_overrides,
        )

    return _make


@pytest.fixture
def fetch_user(session_factory):
    """Read a user through a fresh session so the result reflects committed state."""

    async def _fetch(user_id: int):
        async with session_factory() as session:
            return await credential_store.get_user(session, user_id)

    return _fetch


@pytest.fixture
def override_dependencies(session_factory, auth):
    """Point an app's session and auth-component dependencies at the test instances."""

    def _apply(app):
        async def override_get_session():
            async with session_factory() as session:
                yield session

        app.dependency_overrides[project_db.get_session] = override_get_session
        app.dependency_overrides[get_auth_components] = lambda: auth
        return app

    return _apply


@pytest.fixture
async def async_client(override_dependencies):
    override_dependencies(fastapi_app)

    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://testserver") as ac:
        yield ac

    # Clean up
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def bearer():
    def _headers(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def login(async_client):
    """Log in through the API and return the ``data`` part of the envelope."""

    async def _login(email: str = "alice@x.com", password: str = DEFAULT_PASSWORD) -> dict:
        resp = await async_client.post(
            "/api/v1/auth/login",
            json={"email": email, "password": password},
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]

    return _login


@pytest.fixture
def enable_two_factor(async_client, auth, clock, login, bearer):
    """Run setup + verify-setup for a user and return (secret, backup_codes)."""

    async def _enable(email: str = "alice@x.com", password: str = DEFAULT_PASSWORD):
        data = await login(email, password)
        headers = bearer(data["tokens"]["access_token"])

        resp = await async_client.get("/api/v1/auth/2fa/setup", headers=headers)
        assert resp.status_code == 200, resp.text
        secret = resp.json()["data"]["secret"]

        resp = await async_client.post(
            "/api/v1/auth/2fa/verify-setup",
            json={"token": auth.totp.code_at(secret, clock())},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        return secret, resp.json()["data"]["backup_codes"]

    return _enable
