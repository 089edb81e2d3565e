"""
CRUD operations for cash settlement intents.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from src.models.cash_intent import CashSettlementIntent
from src.models.enums import CashIntentStatus


class CashIntentCRUD:
    """Database operations for CashSettlementIntent rows."""

    @staticmethod
    async def create(
        db: AsyncSession,
        trade_id: uuid.UUID,
        payer_id: uuid.UUID,
        payee_id: uuid.UUID,
        amount: Decimal,
        commission: Decimal,
        created_at: datetime
    ) -> CashSettlementIntent:
        intent = CashSettlementIntent(
            trade_id=trade_id,
            payer_id=payer_id,
            payee_id=payee_id,
            amount=amount,
            commission=commission,
            total_amount=amount + commission,
            status=CashIntentStatus.PENDING.value,
            created_at=created_at,
        )
        db.add(intent)
        await db.flush()
        return intent

    @staticmethod
    async def get_by_trade(db: AsyncSession, trade_id: uuid.UUID) -> Optional[CashSettlementIntent]:
        result = await db.execute(
            select(CashSettlementIntent).where(CashSettlementIntent.trade_id == trade_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def resolve(
        db: AsyncSession,
        trade_id: uuid.UUID,
        status: CashIntentStatus,
        resolved_at: datetime
    ) -> int:
        """Moves a pending intent to releasable or voided."""
        result = await db.execute(
            update(CashSettlementIntent)
            .where(
                CashSettlementIntent.trade_id == trade_id,
                CashSettlementIntent.status == CashIntentStatus.PENDING.value
            )
            .values(status=status.value, resolved_at=resolved_at)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount
