"""
Shared plumbing for CLI commands: one session per command, committed
unless --dry-run was given.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from internhub.database import AsyncSessionLocal, close_db, transaction
from internhub.errors import APIError

logger = logging.getLogger(__name__)


class SessionCommand:
    """Base class for commands that run one unit of work."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def run(self, work: Callable[[AsyncSession], Awaitable[Any]]) -> int:
        try:
            asyncio.run(self._run(work))
            return 0
        except APIError as e:
            logger.warning(f"Command failed with {e.code}: {e.message}")
            print(f"Error: {e.message}")
            return 1

    async def _run(self, work: Callable[[AsyncSession], Awaitable[Any]]) -> None:
        try:
            async with AsyncSessionLocal() as db:
                if self.dry_run:
                    await work(db)
                    await db.rollback()
                    print("(dry run: changes rolled back)")
                    return
                async with transaction(db):
                    await work(db)
        finally:
            await close_db()
