"""Inspi referral service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from models import SystemHealth
from database import async_session_maker, init_db, close_db
from db.models import User, InviteCode
from services.badge_service import get_badge_service
from services.email_service import EmailService
from services.reward_engine import get_reward_engine

# Import routes
from routes import auth, register, invitations, rewards, credits, badges, notifications, analytics
from routes import users, admin_fraud, admin_rewards, admin_settings

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def seed_reference_data() -> None:
    """Default reward bundles and the built-in badges and titles."""
    async with async_session_maker() as session:
        await get_reward_engine(session).initialize_default_configs()
        await get_badge_service(session).ensure_builtin_badges()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()

    logger.info("Inspi referral service starting...")
    logger.info(f"Database URL: {settings.database_url.split('@')[1] if '@' in settings.database_url else 'local'}")

    await init_db()
    await seed_reference_data()

    yield

    logger.info("Shutting down...")
    await close_db()


app = FastAPI(
    title="Inspi Referral Service",
    description="Invite codes, referral rewards, credits and fraud controls",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Public and per-user routes
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(register.router, prefix="/api/register", tags=["register"])
app.include_router(invitations.router, prefix="/api/invitations", tags=["invitations"])
app.include_router(rewards.router, prefix="/api/rewards", tags=["rewards"])
app.include_router(credits.router, prefix="/api/credits", tags=["credits"])
app.include_router(badges.router, prefix="/api/badges", tags=["badges"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["analytics"])

# Admin routes
app.include_router(users.router, prefix="/api/admin/users", tags=["admin-users"])
app.include_router(admin_fraud.router, prefix="/api/admin/fraud", tags=["admin-fraud"])
app.include_router(admin_rewards.router, prefix="/api/admin/rewards", tags=["admin-rewards"])
app.include_router(admin_settings.router, prefix="/api/admin/settings", tags=["admin-settings"])


@app.get("/health", response_model=SystemHealth)
async def health_check() -> SystemHealth:
    """Health check endpoint for container orchestration."""
    try:
        async with async_session_maker() as session:
            users_count = (await session.execute(select(func.count(User.id)))).scalar() or 0
            codes_count = (
                await session.execute(select(func.count(InviteCode.id)).where(InviteCode.is_active == True))
            ).scalar() or 0
            smtp_configured = await EmailService(session).is_configured()
    except SQLAlchemyError as e:
        logger.error(f"Health check could not reach the database: {e}")
        return SystemHealth(status="degraded", database_connected=False)

    return SystemHealth(
        status="healthy",
        database_connected=True,
        smtp_configured=smtp_configured,
        users_count=users_count,
        active_invite_codes=codes_count,
    )
