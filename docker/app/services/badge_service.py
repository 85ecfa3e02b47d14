"""Badge and title service."""

import logging
from typing import Any, List, Optional
import uuid

from sqlalchemy import select, and_, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    Badge,
    BadgeCategory,
    BadgeRarity,
    RequirementType,
    UserBadge,
    Title,
    UserTitle,
    InviteStats,
)
from services.credit_service import get_credit_service

logger = logging.getLogger(__name__)

MAX_DISPLAYED_BADGES = 3

ACTIVATION_MILESTONES = (3, 8, 20, 40, 80)
SUPER_INVITER_TITLE_ID = "super_inviter"

_ACTIVATION_BADGE_RARITY = {
    3: BadgeRarity.COMMON,
    8: BadgeRarity.COMMON,
    20: BadgeRarity.RARE,
    40: BadgeRarity.EPIC,
    80: BadgeRarity.LEGENDARY,
}


def activation_badge_id(milestone: int) -> str:
    return f"active_inviter_{milestone}"


class BadgeError(Exception):
    """Exception for badge and title errors."""

    def __init__(self, message: str, code: str = "badge_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class BadgeService:
    """Service for badge/title definitions and awards."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # -------------------------------------------------------------------------
    # Definitions
    # -------------------------------------------------------------------------

    async def list_badges(self, include_inactive: bool = False) -> List[Badge]:
        query = select(Badge).order_by(Badge.created_at)
        if not include_inactive:
            query = query.where(Badge.is_active == True)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_badge(self, badge_id: str) -> Optional[Badge]:
        return await self.db.get(Badge, badge_id)

    async def create_badge(
        self,
        badge_id: str,
        name: str,
        description: str = "",
        category: BadgeCategory = BadgeCategory.INVITER,
        rarity: BadgeRarity = BadgeRarity.COMMON,
        requirements: Optional[List[dict[str, Any]]] = None,
        icon_url: Optional[str] = None,
    ) -> Badge:
        """Create a badge definition.

        Raises:
            BadgeError: If the id is taken or a requirement is malformed
        """
        if await self.get_badge(badge_id) is not None:
            raise BadgeError(f"Badge '{badge_id}' already exists", "badge_exists")

        badge = Badge(
            id=badge_id,
            name=name,
            description=description,
            category=category,
            rarity=rarity,
            requirements=_normalize_requirements(requirements),
            icon_url=icon_url,
        )
        self.db.add(badge)
        await self.db.commit()
        await self.db.refresh(badge)

        logger.info(f"Created badge {badge_id}")
        return badge

    async def update_badge(self, badge_id: str, **fields: Any) -> Badge:
        badge = await self.get_badge(badge_id)
        if badge is None:
            raise BadgeError("Badge not found", "not_found")

        if "requirements" in fields:
            fields["requirements"] = _normalize_requirements(fields["requirements"])

        for key, value in fields.items():
            if value is not None and hasattr(badge, key):
                setattr(badge, key, value)

        await self.db.commit()
        await self.db.refresh(badge)
        return badge

    async def delete_badge(self, badge_id: str) -> bool:
        badge = await self.get_badge(badge_id)
        if badge is None:
            return False

        await self.db.delete(badge)
        await self.db.commit()

        logger.info(f"Deleted badge {badge_id}")
        return True

    async def list_titles(self, include_inactive: bool = False) -> List[Title]:
        query = select(Title).order_by(Title.created_at)
        if not include_inactive:
            query = query.where(Title.is_active == True)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_title(self, title_id: str) -> Optional[Title]:
        return await self.db.get(Title, title_id)

    async def create_title(
        self,
        title_id: str,
        name: str,
        description: str = "",
        color: str = "#6366f1",
        requirements: Optional[List[dict[str, Any]]] = None,
    ) -> Title:
        if await self.get_title(title_id) is not None:
            raise BadgeError(f"Title '{title_id}' already exists", "title_exists")

        title = Title(
            id=title_id,
            name=name,
            description=description,
            color=color,
            requirements=_normalize_requirements(requirements),
        )
        self.db.add(title)
        await self.db.commit()
        await self.db.refresh(title)

        logger.info(f"Created title {title_id}")
        return title

    async def update_title(self, title_id: str, **fields: Any) -> Title:
        title = await self.get_title(title_id)
        if title is None:
            raise BadgeError("Title not found", "not_found")

        if "requirements" in fields:
            fields["requirements"] = _normalize_requirements(fields["requirements"])

        for key, value in fields.items():
            if value is not None and hasattr(title, key):
                setattr(title, key, value)

        await self.db.commit()
        await self.db.refresh(title)
        return title

    async def delete_title(self, title_id: str) -> bool:
        title = await self.get_title(title_id)
        if title is None:
            return False

        await self.db.delete(title)
        await self.db.commit()
        return True

    async def ensure_builtin_badges(self) -> None:
        """Seed the badges and title that milestone rewards point at."""
        for milestone in ACTIVATION_MILESTONES:
            badge_id = activation_badge_id(milestone)
            if await self.get_badge(badge_id) is None:
                self.db.add(
                    Badge(
                        id=badge_id,
                        name=f"Active Inviter {milestone}",
                        description=f"{milestone} invited users became active",
                        category=BadgeCategory.INVITER,
                        rarity=_ACTIVATION_BADGE_RARITY[milestone],
                        requirements=[
                            {"type": RequirementType.ACTIVE_INVITEES.value, "value": milestone},
                        ],
                    )
                )

        if await self.get_title(SUPER_INVITER_TITLE_ID) is None:
            self.db.add(
                Title(
                    id=SUPER_INVITER_TITLE_ID,
                    name="Super Inviter",
                    description="50 successful invitations with 40 active invitees",
                    color="#f59e0b",
                    requirements=[
                        {"type": RequirementType.INVITE_COUNT.value, "value": 50},
                        {"type": RequirementType.ACTIVE_INVITEES.value, "value": 40},
                    ],
                )
            )

        await self.db.commit()

    # -------------------------------------------------------------------------
    # Awards
    # -------------------------------------------------------------------------

    async def award_badge(self, user_id: uuid.UUID, badge_id: str) -> UserBadge:
        """Award a badge; returns the existing award if already held."""
        result = await self.db.execute(
            select(UserBadge).where(
                and_(UserBadge.user_id == user_id, UserBadge.badge_id == badge_id)
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing

        badge = await self.get_badge(badge_id)
        if badge is None:
            raise BadgeError(f"Badge '{badge_id}' not found", "not_found")

        user_badge = UserBadge(user_id=user_id, badge_id=badge_id, badge=badge)
        self.db.add(user_badge)
        await self.db.commit()

        logger.info(f"Awarded badge {badge_id} to user {user_id}")
        return user_badge

    async def award_title(self, user_id: uuid.UUID, title_id: str) -> UserTitle:
        """Award a title; the first title a user gets becomes active."""
        result = await self.db.execute(
            select(UserTitle).where(
                and_(UserTitle.user_id == user_id, UserTitle.title_id == title_id)
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing

        title = await self.get_title(title_id)
        if title is None:
            raise BadgeError(f"Title '{title_id}' not found", "not_found")

        has_active = await self.get_active_title(user_id) is not None
        user_title = UserTitle(user_id=user_id, title_id=title_id, title=title, is_active=not has_active)
        self.db.add(user_title)
        await self.db.commit()

        logger.info(f"Awarded title {title_id} to user {user_id}")
        return user_title

    async def get_user_badges(self, user_id: uuid.UUID) -> List[UserBadge]:
        result = await self.db.execute(
            select(UserBadge)
            .where(UserBadge.user_id == user_id)
            .order_by(UserBadge.earned_at.desc())
        )
        return list(result.scalars().all())

    async def get_user_titles(self, user_id: uuid.UUID) -> List[UserTitle]:
        result = await self.db.execute(
            select(UserTitle)
            .where(UserTitle.user_id == user_id)
            .order_by(UserTitle.earned_at.desc())
        )
        return list(result.scalars().all())

    async def get_active_title(self, user_id: uuid.UUID) -> Optional[UserTitle]:
        result = await self.db.execute(
            select(UserTitle).where(
                and_(UserTitle.user_id == user_id, UserTitle.is_active == True)
            )
        )
        return result.scalars().first()

    async def set_displayed_badges(self, user_id: uuid.UUID, badge_ids: List[str]) -> List[UserBadge]:
        """Choose which owned badges are shown on the profile.

        Raises:
            BadgeError: If more than three are chosen or one is not owned
        """
        badge_ids = list(dict.fromkeys(badge_ids))
        if len(badge_ids) > MAX_DISPLAYED_BADGES:
            raise BadgeError(
                f"At most {MAX_DISPLAYED_BADGES} badges can be displayed",
                "too_many_badges",
            )

        owned = await self.get_user_badges(user_id)
        owned_ids = {ub.badge_id for ub in owned}
        missing = [b for b in badge_ids if b not in owned_ids]
        if missing:
            raise BadgeError(f"Badge not owned: {', '.join(missing)}", "badge_not_owned")

        for user_badge in owned:
            user_badge.is_displayed = user_badge.badge_id in badge_ids

        await self.db.commit()
        return [ub for ub in owned if ub.is_displayed]

    async def set_active_title(self, user_id: uuid.UUID, title_id: str) -> UserTitle:
        result = await self.db.execute(
            select(UserTitle).where(
                and_(UserTitle.user_id == user_id, UserTitle.title_id == title_id)
            )
        )
        target = result.scalar_one_or_none()
        if target is None:
            raise BadgeError("Title not owned", "title_not_owned")

        await self.db.execute(
            update(UserTitle)
            .where(and_(UserTitle.user_id == user_id, UserTitle.id != target.id))
            .values(is_active=False)
        )
        target.is_active = True
        await self.db.commit()
        return target

    # -------------------------------------------------------------------------
    # Requirement evaluation
    # -------------------------------------------------------------------------

    async def _user_metrics(self, user_id: uuid.UUID) -> dict[str, int]:
        stats = await self.db.get(InviteStats, user_id)
        credits = await get_credit_service(self.db).get_user_balance(user_id)
        return {
            RequirementType.INVITE_COUNT.value: stats.successful_registrations if stats else 0,
            RequirementType.ACTIVE_INVITEES.value: stats.active_invitees if stats else 0,
            RequirementType.TOTAL_CREDITS.value: credits.total_earned,
        }

    async def check_and_award_badges(self, user_id: uuid.UUID) -> List[UserBadge]:
        """Award every active badge whose requirements the user meets.

        Returns:
            Newly awarded badges
        """
        metrics = await self._user_metrics(user_id)
        owned = {ub.badge_id for ub in await self.get_user_badges(user_id)}

        awarded = []
        for badge in await self.list_badges():
            if badge.id in owned or not badge.requirements:
                continue
            if _requirements_met(badge.requirements, metrics):
                awarded.append(await self.award_badge(user_id, badge.id))
        return awarded

    async def check_and_award_titles(self, user_id: uuid.UUID) -> List[UserTitle]:
        metrics = await self._user_metrics(user_id)
        owned = {ut.title_id for ut in await self.get_user_titles(user_id)}

        awarded = []
        for title in await self.list_titles():
            if title.id in owned or not title.requirements:
                continue
            if _requirements_met(title.requirements, metrics):
                awarded.append(await self.award_title(user_id, title.id))
        return awarded


def _normalize_requirements(requirements: Optional[List[dict[str, Any]]]) -> List[dict[str, Any]]:
    normalized = []
    for req in requirements or []:
        try:
            req_type = RequirementType(req["type"])
            value = int(req["value"])
        except (KeyError, ValueError, TypeError) as e:
            raise BadgeError(f"Invalid requirement {req!r}: {e}", "invalid_requirement")
        normalized.append({"type": req_type.value, "value": value})
    return normalized


def _requirements_met(requirements: List[dict[str, Any]], metrics: dict[str, int]) -> bool:
    return all(metrics.get(req["type"], 0) >= req["value"] for req in requirements)


def get_badge_service(db: AsyncSession) -> BadgeService:
    """Get a badge service instance."""
    return BadgeService(db)
