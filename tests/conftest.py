"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default env, must be set before gigpay is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./gigpay_test.db")
os.environ.setdefault("GIGPAY_ENV", "test")
os.environ.setdefault("DEV_API_KEY", "test-secret-key")
os.environ.setdefault("SECRET_KEY", "test-hmac-secret")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_gigpay")
os.environ.setdefault("TRADESAFE_CLIENT_ID", "ts-client")
os.environ.setdefault("TRADESAFE_CLIENT_SECRET", "ts-secret")

from gigpay.main import app  # noqa: E402
from gigpay.db import get_db  # noqa: E402
from gigpay.dependencies import get_paystack_client, get_tradesafe_client  # noqa: E402
from gigpay.models import ApiKey, ApiScope, Base, User  # noqa: E402
from gigpay.models.payment import PaymentProvider  # noqa: E402
from gigpay.schemas.gig import GigCreate  # noqa: E402
from gigpay.services import applications as applications_service  # noqa: E402
from gigpay.services import escrow as escrow_service  # noqa: E402
from gigpay.services import gigs as gigs_service  # noqa: E402
from gigpay.services import wallet as wallet_service  # noqa: E402
from gigpay.services.fee_config import get_fee_config_cache  # noqa: E402
from gigpay.utils.apikey import hash_key  # noqa: E402

DB_PATH = Path("./gigpay_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file per session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False, "timeout": 30},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)

# --- (2) Schema comes from Alembic only
_run_migrations()


def _wipe_tables() -> None:
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db_session() -> Iterator[Session]:
    # services commit on their own, so isolation is a wipe after each test
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        _wipe_tables()


@pytest.fixture(autouse=True)
def override_dependencies(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    # no live gateway calls from API tests; tests that need a client inject one
    app.dependency_overrides[get_paystack_client] = lambda: None
    app.dependency_overrides[get_tradesafe_client] = lambda: None
    get_fee_config_cache().invalidate()
    yield
    app.dependency_overrides.clear()
    get_fee_config_cache().invalidate()


@pytest.fixture
def session_factory() -> sessionmaker:
    """Independent sessions for tests that run work on several threads."""
    return TestingSessionLocal


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['DEV_API_KEY']}"}


@pytest.fixture
def make_api_key(db_session: Session) -> Callable[..., ApiKey]:
    def _factory(
        name: str,
        key: str,
        scope: ApiScope = ApiScope.user,
        is_active: bool = True,
        user_id: int | None = None,
    ) -> ApiKey:
        api_key = ApiKey(
            name=name,
            prefix="test_" + scope.value,
            key_hash=hash_key(key),
            scope=scope,
            user_id=user_id,
            is_active=is_active,
        )
        db_session.add(api_key)
        db_session.commit()
        db_session.refresh(api_key)
        return api_key

    return _factory


@pytest.fixture
def user_headers(make_api_key: Callable[..., ApiKey]) -> dict[str, str]:
    token = f"user-{uuid4().hex}"
    make_api_key(name=f"user-{uuid4().hex}", key=token, scope=ApiScope.user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for(make_api_key: Callable[..., ApiKey]) -> Callable[[User], dict[str, str]]:
    """Headers for a user-scope key bound to the given user."""

    def _factory(user: User) -> dict[str, str]:
        token = f"user-{uuid4().hex}"
        make_api_key(name=f"user-{uuid4().hex}", key=token, scope=ApiScope.user, user_id=user.id)
        return {"Authorization": f"Bearer {token}"}

    return _factory


@pytest.fixture
def support_headers(make_api_key: Callable[..., ApiKey]) -> dict[str, str]:
    token = f"support-{uuid4().hex}"
    make_api_key(name=f"support-{uuid4().hex}", key=token, scope=ApiScope.support)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(make_api_key: Callable[..., ApiKey]) -> dict[str, str]:
    token = f"admin-{uuid4().hex}"
    make_api_key(name=f"admin-{uuid4().hex}", key=token, scope=ApiScope.admin)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(prefix: str = "user") -> User:
        suffix = uuid4().hex[:8]
        user = User(username=f"{prefix}-{suffix}", email=f"{prefix}-{suffix}@example.com")
        db_session.add(user)
        db_session.commit()
        return user

    return _factory


@pytest.fixture
def make_gig(db_session: Session) -> Callable[..., object]:
    def _factory(employer: User, *, budget: str = "500.00", max_applicants: int | None = None, title: str = "Garden clean-up"):
        return gigs_service.create_gig(
            db_session,
            GigCreate(
                employer_id=employer.id,
                title=title,
                description="Clear the back garden and remove the rubble.",
                budget=Decimal(budget),
                max_applicants=max_applicants,
            ),
        )

    return _factory


@pytest.fixture
def make_hired_gig(db_session: Session, make_user, make_gig) -> Callable[..., SimpleNamespace]:
    """Employer, worker and a gig with the worker's application accepted."""

    def _factory(*, budget: str = "500.00", rate: str = "500.00") -> SimpleNamespace:
        employer = make_user("employer")
        worker = make_user("worker")
        gig = make_gig(employer, budget=budget)
        application = applications_service.create_application(
            db_session,
            gig_id=gig.id,
            applicant_id=worker.id,
            proposed_rate=Decimal(rate),
        )
        applications_service.accept_application(db_session, application.id, employer_id=employer.id)
        return SimpleNamespace(employer=employer, worker=worker, gig=gig, application=application)

    return _factory


@pytest.fixture
def make_funded_gig(db_session: Session, make_hired_gig) -> Callable[..., SimpleNamespace]:
    """A hired gig whose escrow has been funded through a manual payment."""

    def _factory(*, budget: str = "500.00", rate: str = "500.00") -> SimpleNamespace:
        hired = make_hired_gig(budget=budget, rate=rate)
        payment = escrow_service.fund_gig(
            db_session,
            gig_id=hired.gig.id,
            employer_id=hired.employer.id,
            gross_amount=Decimal(rate),
            provider=PaymentProvider.MANUAL,
            provider_txn_id=f"txn-{uuid4().hex}",
        )
        hired.payment = payment
        hired.escrow = escrow_service.get_escrow_for_gig(db_session, hired.gig.id)
        return hired

    return _factory


@pytest.fixture
def fund_wallet(db_session: Session) -> Callable[[User, str], None]:
    """Credit released earnings straight into a user's wallet."""

    def _factory(user: User, amount: str) -> None:
        wallet_service.credit(db_session, user.id, Decimal(amount))
        db_session.commit()

    return _factory
