"""
Database CLI commands: init
"""
import asyncio

from internhub.database import init_db, close_db


class DbCommand:
    """Database CLI command handler."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def execute(self, args) -> int:
        if args.db_action == "init":
            if self.dry_run:
                print("Would create missing tables")
                return 0
            asyncio.run(self._init())
            print("✓ Database tables ready")
            return 0
        print("Error: Unknown db action")
        return 1

    async def _init(self) -> None:
        await init_db()
        await close_db()
