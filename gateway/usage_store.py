"""Persistence of ``UsageState`` across restarts.

Failures are logged and swallowed: losing a snapshot must never fail a chat
request.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import UsageRecord
from .usage import UsageState

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_ID = "default"


class UsageStore:
    """Loads and saves the governor snapshot in the ``usage_state`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway_id: str = DEFAULT_GATEWAY_ID,
    ):
        self._session_factory = session_factory
        self._gateway_id = gateway_id

    async def load(self) -> Optional[UsageState]:
        """Return the persisted state, or None if absent or unreadable."""
        try:
            async with self._session_factory() as db:
                record = await db.get(UsageRecord, self._gateway_id)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to load usage state for {self._gateway_id}: {e}")
            return None

        if record is None:
            return None

        return UsageState(
            tokens_used_today=record.tokens_used_today,
            daily_limit=record.daily_limit,
            last_reset_date=record.last_reset_date,
            total_requests=record.total_requests,
            failed_requests=record.failed_requests,
        )

    async def save(self, state: UsageState) -> bool:
        """Upsert ``state``. Returns False if the write failed."""
        try:
            async with self._session_factory() as db:
                record = await db.get(UsageRecord, self._gateway_id)
                if record is None:
                    record = UsageRecord(gateway_id=self._gateway_id)
                    db.add(record)

                record.tokens_used_today = state.tokens_used_today
                record.daily_limit = state.daily_limit
                record.last_reset_date = state.last_reset_date
                record.total_requests = state.total_requests
                record.failed_requests = state.failed_requests
                await db.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to save usage state for {self._gateway_id}: {e}")
            return False

        logger.debug(
            f"Saved usage state for {self._gateway_id}: "
            f"{state.tokens_used_today}/{state.daily_limit} tokens"
        )
        return True
