import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
from models.distribution import Distribution
from models.user import User
from routers import rate_limit
from services.crypto import encrypt_secret
from services.points import apply_recharge


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """File-backed SQLite database per test, schema created from the models."""
    db_path = tmp_path / "points.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


async def seed_member(session_maker, member_id, *, balance=0, role="user", telegram_bot_token=None):
    async with session_maker() as session:
        session.add(
            User(
                id=member_id,
                email=f"{member_id}@example.com",
                role=role,
                telegram_bot_token=encrypt_secret(telegram_bot_token) if telegram_bot_token else None,
            )
        )
        await session.commit()
        if balance:
            await apply_recharge(session, member_id, balance, memo="seed")


async def seed_distribution(session_maker, distribution_id, owner_id, *, code=None, network_area="global", is_active=True):
    async with session_maker() as session:
        session.add(
            Distribution(
                id=distribution_id,
                code=code or distribution_id,
                owner_id=owner_id,
                network_area=network_area,
                is_active=is_active,
            )
        )
        await session.commit()
