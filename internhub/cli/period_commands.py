"""
Period CLI commands: list, activate, sync-progress
"""
from datetime import date

from sqlalchemy import select

from internhub.cli.base import SessionCommand
from internhub.orm.period import Period
from internhub.services import period_service, registration_service


class PeriodCommand(SessionCommand):
    """Period CLI command handler."""

    def execute(self, args) -> int:
        if args.period_action == "list":
            return self.run(self._list)
        elif args.period_action == "activate":
            return self.run(lambda db: self._activate(db, args.id))
        elif args.period_action == "sync-progress":
            today = date.fromisoformat(args.date) if args.date else date.today()
            return self.run(lambda db: self._sync(db, args.id, today))
        else:
            print("Error: Unknown period action")
            return 1

    async def _list(self, db) -> None:
        result = await db.execute(select(Period).order_by(Period.id))
        periods = result.scalars().all()
        if not periods:
            print("No periods found")
            return

        print(f"\n{'ID':<5} {'Term':<30} {'Registration':<25} {'Active':<6}")
        print("-" * 70)
        for p in periods:
            term = f"{p.semester} {p.academic_year}"
            window = f"{p.registration_start} - {p.registration_end}"
            print(f"{p.id:<5} {term[:28]:<30} {window:<25} {'yes' if p.is_active else '':<6}")

    async def _activate(self, db, period_id: int) -> None:
        period = await period_service.set_active_period(db, period_id)
        print(f"✓ Period {period.id} ({period.semester} {period.academic_year}) is now active")

    async def _sync(self, db, period_id: int, today: date) -> None:
        counts = await registration_service.sync_period_progress(db, period_id, today)
        print(f"✓ Checked {counts['checked']} registration(s) as of {today.isoformat()}")
        print(f"  started:   {counts['started']}")
        print(f"  completed: {counts['completed']}")
