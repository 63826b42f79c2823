import pytest_asyncio

from app.core.security import generate_api_key
from app.models.api_key import ApiKey


async def _seed_key(db_session, *, subject: str, role: str) -> dict:
    key = generate_api_key()
    row = ApiKey(
        subject=subject,
        role=role,
        key_prefix=key.prefix,
        key_hash=key.hashed,
        is_active=True,
    )
    db_session.add(row)
    await db_session.commit()

    return {
        "api_key_id": row.id,
        "subject": subject,
        "role": role,
        "plain_key": key.plain,
        "headers": {"X-API-Key": key.plain},
    }


@pytest_asyncio.fixture
async def seed_manager_key(db_session):
    return await _seed_key(db_session, subject="42", role="manager")


@pytest_asyncio.fixture
async def seed_courier_key(db_session):
    return await _seed_key(db_session, subject="7", role="courier")


@pytest_asyncio.fixture
async def seed_non_numeric_key(db_session):
    # admin role, but the subject is not a user id
    return await _seed_key(db_session, subject="ops-bot", role="admin")
