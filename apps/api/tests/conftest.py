import uuid
from datetime import timedelta
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from main import app
from database import Base, get_db
from models.meal_plan import MealPlan
from models.mess_credits import MessCredits
from models.mess_membership import MessMembership
from models.mess_profile import MessProfile
from models.user import User
from routers import rate_limit
from services import locks
from services.periods import subscription_end_date, utc_now
from services.session_token import create_session_token


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit and lock state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    locks.reset_local_locks()
    yield
    rate_limit._local_counters.clear()
    locks.reset_local_locks()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "mess.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def auth_headers():
    def _headers(user_id: str):
        return {"Authorization": f"Bearer {create_session_token(user_id)['token']}"}

    return _headers


@pytest.fixture
def seed_mess(session_maker):
    """Create an owner, a mess, one meal plan and (optionally) a credits account."""

    async def _seed(
        *,
        available_credits=None,
        plan_price=1500,
        billing_period="month",
        trial_days=None,
        auto_renewal=False,
        leave_credit_enabled=True,
    ):
        owner_id = f"owner-{uuid.uuid4().hex[:8]}"
        mess_id = str(uuid.uuid4())
        plan_id = str(uuid.uuid4())
        async with session_maker() as session:
            session.add(User(id=owner_id, email=f"{owner_id}@example.com", name="Owner"))
            session.add(MessProfile(id=mess_id, owner_id=owner_id, name="Annapurna Mess"))
            session.add(
                MealPlan(
                    id=plan_id,
                    mess_id=mess_id,
                    name="Full Meals",
                    price=plan_price,
                    billing_period=billing_period,
                    leave_credit_enabled=leave_credit_enabled,
                )
            )
            if available_credits is not None:
                now = utc_now()
                account = MessCredits(
                    id=str(uuid.uuid4()),
                    mess_id=mess_id,
                    total_credits=available_credits,
                    used_credits=0,
                    available_credits=available_credits,
                    auto_renewal=auto_renewal,
                    low_credit_threshold=100,
                    status="active" if available_credits > 0 else "suspended",
                )
                if trial_days:
                    account.is_trial_active = True
                    account.trial_start_date = now
                    account.trial_end_date = now + timedelta(days=trial_days)
                    account.status = "trial"
                session.add(account)
            await session.commit()
        return SimpleNamespace(owner_id=owner_id, mess_id=mess_id, plan_id=plan_id)

    return _seed


@pytest.fixture
def add_member(session_maker):
    """Create a user with an active, paid membership on the given mess."""

    async def _add(mess, *, user_id=None, name="Member", plan_id=None, start=None):
        user_id = user_id or f"user-{uuid.uuid4().hex[:8]}"
        started = start or utc_now()
        end = subscription_end_date(started, "month")
        membership_id = str(uuid.uuid4())
        async with session_maker() as session:
            session.add(User(id=user_id, email=f"{user_id}@example.com", name=name))
            session.add(
                MessMembership(
                    id=membership_id,
                    user_id=user_id,
                    mess_id=mess.mess_id,
                    meal_plan_id=plan_id or mess.plan_id,
                    status="active",
                    payment_status="paid",
                    payment_amount=1500,
                    payment_method="upi",
                    subscription_start_date=started,
                    subscription_end_date=end,
                    last_payment_date=started,
                    next_payment_date=end + timedelta(milliseconds=1),
                )
            )
            await session.commit()
        return SimpleNamespace(user_id=user_id, membership_id=membership_id)

    return _add
