"""
Shared fixtures for the referral service tests
==============================================

Every test gets a fresh in-memory SQLite database. Settings are read from
the environment on first import, so the variables below are set before any
application module is loaded.
"""

import os
from datetime import datetime
from typing import Optional

from cryptography.fernet import Fernet

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-the-referral-suite")
os.environ.setdefault("CREDENTIAL_ENCRYPTION_KEY", Fernet.generate_key().decode("utf-8"))
os.environ.setdefault("DEBUG", "false")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import main
from database import build_engine, create_schema, get_db
from db.models import User, UserRole, SystemSettings
from services import password_service
from services.badge_service import get_badge_service
from services.jwt_service import get_jwt_service


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    """Minimum bcrypt cost keeps the suite quick."""
    monkeypatch.setattr(password_service, "BCRYPT_ROUNDS", 4)


@pytest.fixture
async def engine():
    test_engine = build_engine("sqlite+aiosqlite://")
    await create_schema(test_engine)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def seeded_badges(db):
    """Built-in activation badges and the Super Inviter title."""
    await get_badge_service(db).ensure_builtin_badges()


# =============================================================================
# USERS
# =============================================================================

async def create_user(
    db: AsyncSession,
    username: str,
    role: UserRole = UserRole.USER,
    registration_ip: Optional[str] = None,
    email: Optional[str] = None,
    is_activated: bool = False,
) -> User:
    user = User(
        email=email or f"{username}@example.com",
        username=username,
        password_hash=password_service.hash_password("password123"),
        role=role,
        is_active=True,
        is_activated=is_activated,
        registration_ip=registration_ip,
        created_at=datetime.utcnow(),
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def inviter(db) -> User:
    return await create_user(db, "alice", registration_ip="10.0.0.1")


@pytest.fixture
async def admin(db) -> User:
    user = await create_user(db, "root", role=UserRole.ADMIN, is_activated=True)
    db.add(SystemSettings(setup_completed=True, setup_completed_at=datetime.utcnow()))
    await db.commit()
    return user


async def attribute_invitee(db: AsyncSession, inviter: User, username: str, ip: Optional[str] = None):
    """Create an invitee and attribute them to a fresh code of ``inviter``.

    Returns:
        (invitee, registration)
    """
    from services.invitation_service import InvitationService

    invitations = InvitationService(db)
    invite_code = await invitations.generate_invite_code(inviter)
    invitee = await create_user(db, username, registration_ip=ip)
    registration = await invitations.process_invite_registration(invite_code.code, invitee, ip_address=ip)
    return invitee, registration


def auth_headers(user: User, ip: Optional[str] = None) -> dict:
    token = get_jwt_service().create_access_token(
        user_id=user.id,
        email=user.email,
        role=user.role.value,
    )
    headers = {"Authorization": f"Bearer {token}"}
    if ip:
        headers["X-Forwarded-For"] = ip
    return headers


# =============================================================================
# HTTP CLIENT
# =============================================================================

@pytest.fixture
async def client(session_maker, monkeypatch):
    """Async client bound to the app, sharing the test database."""

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    main.app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(main, "async_session_maker", session_maker)

    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    main.app.dependency_overrides.clear()
