"""
Periodic housekeeping started from the application lifespan.

- Sweeps expired rate-limit windows so the in-memory map stays small
- Purges revoked and expired refresh-token records
"""

import asyncio
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edupulse.api.middleware.rate_limit import InMemoryRateLimitStore
from edupulse.kernel.identity.repository import SqlAlchemyRefreshTokenStore
from edupulse.kernel.models.base import utcnow
from edupulse.logging_config import get_logger

logger = get_logger(__name__)


async def run_maintenance_once(
    rate_limit_store: Optional[InMemoryRateLimitStore],
    session_factory: Callable[[], AsyncSession],
) -> tuple[int, int]:
    """
    Run one housekeeping pass.

    Returns:
        (rate-limit windows swept, refresh-token rows purged)
    """
    swept = rate_limit_store.sweep() if rate_limit_store is not None else 0

    async with session_factory() as session:
        purged = await SqlAlchemyRefreshTokenStore(session).purge(utcnow())
        await session.commit()

    if swept or purged:
        logger.info(
            "Maintenance pass completed",
            extra={"rate_limit_windows_swept": swept, "refresh_tokens_purged": purged},
        )
    return swept, purged


async def maintenance_loop(
    interval_seconds: float,
    rate_limit_store: Optional[InMemoryRateLimitStore],
    session_factory: Callable[[], AsyncSession],
) -> None:
    """Run housekeeping every interval until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_maintenance_once(rate_limit_store, session_factory)
        except SQLAlchemyError:
            logger.exception("Maintenance pass failed")
