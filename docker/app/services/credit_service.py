"""Credit ledger service.

Credits are AI-generation allowances. Every grant is an EARNED ledger line
with an expiry; spending draws from the lines that expire soonest first.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional
import uuid

from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from db.models import CreditRecord, CreditUsage, CreditType, CreditSource

logger = logging.getLogger(__name__)


class CreditError(Exception):
    """Exception for credit ledger errors."""

    def __init__(self, message: str, code: str = "credit_error"):
        self.message = message
        self.code = code
        super().__init__(message)


@dataclass
class CreditBalance:
    """Snapshot of a user's credit position."""

    user_id: uuid.UUID
    total_earned: int
    total_used: int
    total_expired: int
    available_credits: int
    expiring_credits: int
    last_updated: datetime


@dataclass
class CreditStats:
    total_earned: int
    total_used: int
    total_expired: int
    average_daily: float
    top_sources: List[dict] = field(default_factory=list)


def _open_filter(user_id: uuid.UUID, now: datetime):
    return and_(
        CreditRecord.user_id == user_id,
        CreditRecord.type == CreditType.EARNED,
        CreditRecord.used_at.is_(None),
        or_(CreditRecord.expires_at.is_(None), CreditRecord.expires_at > now),
    )


class CreditService:
    """Service for granting, spending and expiring credits."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def add_credits(
        self,
        user_id: uuid.UUID,
        amount: int,
        source: CreditSource,
        source_id: Optional[str] = None,
        description: str = "",
        expires_at: Optional[datetime] = None,
    ) -> CreditRecord:
        """Grant credits to a user.

        Args:
            user_id: Recipient
            amount: Positive number of credits
            source: Where the credits come from
            source_id: Identifier of the originating record (reward, order...)
            description: Human readable reason
            expires_at: Expiry; defaults to ``credit_expiry_days`` from now

        Returns:
            The EARNED ledger line

        Raises:
            CreditError: If amount is not positive
        """
        if amount <= 0:
            raise CreditError("Credit amount must be positive", "invalid_amount")

        if expires_at is None:
            expires_at = datetime.utcnow() + timedelta(days=self.settings.credit_expiry_days)

        record = CreditRecord(
            user_id=user_id,
            amount=amount,
            remaining=amount,
            type=CreditType.EARNED,
            source=source,
            source_id=source_id,
            description=description,
            expires_at=expires_at,
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)

        logger.info(f"Added {amount} credits to user {user_id} ({source.value}: {description})")
        return record

    async def use_credits(
        self,
        user_id: uuid.UUID,
        amount: int,
        purpose: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Spend credits, soonest-expiring first.

        Returns:
            False when the available balance is insufficient; nothing is
            written in that case.

        Raises:
            CreditError: If amount is not positive
        """
        if amount <= 0:
            raise CreditError("Credit amount must be positive", "invalid_amount")

        now = datetime.utcnow()
        result = await self.db.execute(
            select(CreditRecord)
            .where(_open_filter(user_id, now))
            .order_by(CreditRecord.expires_at.asc(), CreditRecord.created_at.asc())
            .with_for_update()
        )
        open_records = result.scalars().all()

        available = sum(r.remaining or 0 for r in open_records)
        if available < amount:
            logger.warning(
                f"Insufficient credits for user {user_id}: requested {amount}, available {available}"
            )
            return False

        remaining_amount = amount
        for record in open_records:
            if remaining_amount <= 0:
                break

            take = min(remaining_amount, record.remaining or 0)
            if take <= 0:
                continue

            self.db.add(
                CreditRecord(
                    user_id=user_id,
                    amount=-take,
                    type=CreditType.USED,
                    source=record.source,
                    source_id=record.source_id,
                    description=f"Used: {purpose}",
                    created_at=now,
                    used_at=now,
                )
            )

            record.remaining = (record.remaining or 0) - take
            if record.remaining == 0:
                record.used_at = now

            remaining_amount -= take

        self.db.add(
            CreditUsage(
                user_id=user_id,
                amount=amount,
                purpose=purpose,
                usage_metadata=metadata,
                created_at=now,
            )
        )
        await self.db.commit()

        logger.info(f"User {user_id} used {amount} credits for {purpose}")
        return True

    async def get_available_credits(self, user_id: uuid.UUID) -> int:
        """Sum of unspent, unexpired credits."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(CreditRecord.remaining), 0)).where(
                _open_filter(user_id, datetime.utcnow())
            )
        )
        return int(result.scalar() or 0)

    async def _sum_amount(self, user_id: uuid.UUID, credit_type: CreditType) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(func.abs(CreditRecord.amount)), 0)).where(
                and_(
                    CreditRecord.user_id == user_id,
                    CreditRecord.type == credit_type,
                )
            )
        )
        return int(result.scalar() or 0)

    async def get_user_balance(self, user_id: uuid.UUID) -> CreditBalance:
        """Compute the user's current balance."""
        expiring = await self.get_expiring_credits(user_id, self.settings.credit_expiring_soon_days)

        return CreditBalance(
            user_id=user_id,
            total_earned=await self._sum_amount(user_id, CreditType.EARNED),
            total_used=await self._sum_amount(user_id, CreditType.USED),
            total_expired=await self._sum_amount(user_id, CreditType.EXPIRED),
            available_credits=await self.get_available_credits(user_id),
            expiring_credits=sum(r.remaining or 0 for r in expiring),
            last_updated=datetime.utcnow(),
        )

    async def get_user_credit_history(self, user_id: uuid.UUID, limit: int = 50) -> List[CreditRecord]:
        result = await self.db.execute(
            select(CreditRecord)
            .where(CreditRecord.user_id == user_id)
            .order_by(CreditRecord.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_credit_usage_history(self, user_id: uuid.UUID, limit: int = 50) -> List[CreditUsage]:
        result = await self.db.execute(
            select(CreditUsage)
            .where(CreditUsage.user_id == user_id)
            .order_by(CreditUsage.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _close_records(self, records: Iterable[CreditRecord], description_prefix: str) -> int:
        """Write EXPIRED lines for open records and close them.

        Returns:
            Total credits closed
        """
        now = datetime.utcnow()
        total = 0
        for record in records:
            left = record.remaining or 0
            if left > 0:
                self.db.add(
                    CreditRecord(
                        user_id=record.user_id,
                        amount=-left,
                        type=CreditType.EXPIRED,
                        source=record.source,
                        source_id=record.source_id,
                        description=f"{description_prefix}: {record.description}",
                        created_at=now,
                    )
                )
                total += left
            record.remaining = 0
            record.used_at = now
        return total

    async def expire_credits(self) -> int:
        """Sweep lapsed EARNED lines into EXPIRED entries.

        Returns:
            Number of ledger lines expired
        """
        now = datetime.utcnow()
        result = await self.db.execute(
            select(CreditRecord).where(
                and_(
                    CreditRecord.type == CreditType.EARNED,
                    CreditRecord.used_at.is_(None),
                    CreditRecord.expires_at <= now,
                )
            )
        )
        lapsed = result.scalars().all()

        await self._close_records(lapsed, "Expired")
        await self.db.commit()

        logger.info(f"Expired {len(lapsed)} credit records")
        return len(lapsed)

    async def revoke_credits(
        self,
        user_id: uuid.UUID,
        sources: Iterable[CreditSource],
        reason: str,
    ) -> int:
        """Close every open line from the given sources (reward recovery).

        Returns:
            Amount of credits revoked
        """
        result = await self.db.execute(
            select(CreditRecord).where(
                and_(
                    _open_filter(user_id, datetime.utcnow()),
                    CreditRecord.source.in_(list(sources)),
                )
            )
        )
        revoked = await self._close_records(result.scalars().all(), f"Revoked ({reason})")
        await self.db.commit()

        logger.info(f"Revoked {revoked} credits from user {user_id}: {reason}")
        return revoked

    async def get_expiring_credits(self, user_id: uuid.UUID, days: Optional[int] = None) -> List[CreditRecord]:
        """Open lines that lapse within ``days`` (default 30)."""
        if days is None:
            days = self.settings.credit_expiring_soon_days

        now = datetime.utcnow()
        result = await self.db.execute(
            select(CreditRecord)
            .where(
                and_(
                    _open_filter(user_id, now),
                    CreditRecord.expires_at <= now + timedelta(days=days),
                )
            )
            .order_by(CreditRecord.expires_at.asc())
        )
        return list(result.scalars().all())

    async def get_credit_stats(self, user_id: uuid.UUID) -> CreditStats:
        total_earned = await self._sum_amount(user_id, CreditType.EARNED)

        first_result = await self.db.execute(
            select(func.min(CreditRecord.created_at)).where(
                and_(
                    CreditRecord.user_id == user_id,
                    CreditRecord.type == CreditType.EARNED,
                )
            )
        )
        first_date = first_result.scalar()

        average_daily = 0.0
        if first_date:
            days_since_first = max(1, (datetime.utcnow() - first_date).days)
            average_daily = total_earned / days_since_first

        source_total = func.sum(CreditRecord.amount).label("amount")
        source_result = await self.db.execute(
            select(CreditRecord.source, source_total)
            .where(
                and_(
                    CreditRecord.user_id == user_id,
                    CreditRecord.type == CreditType.EARNED,
                )
            )
            .group_by(CreditRecord.source)
            .order_by(source_total.desc())
            .limit(5)
        )

        return CreditStats(
            total_earned=total_earned,
            total_used=await self._sum_amount(user_id, CreditType.USED),
            total_expired=await self._sum_amount(user_id, CreditType.EXPIRED),
            average_daily=round(average_daily, 2),
            top_sources=[
                {"source": row.source.value, "amount": int(row.amount or 0)}
                for row in source_result.all()
            ],
        )


def get_credit_service(db: AsyncSession) -> CreditService:
    """Get a credit service instance."""
    return CreditService(db)
