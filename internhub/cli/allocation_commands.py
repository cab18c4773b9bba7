"""
Allocation CLI commands: auto-assign, recount
"""
from internhub.cli.base import SessionCommand
from internhub.services import allocation_service, capacity_ledger


class AllocationCommand(SessionCommand):
    """Lecturer allocation CLI command handler."""

    def execute(self, args) -> int:
        if args.allocation_action == "auto-assign":
            return self.run(lambda db: self._auto_assign(db, args.period))
        elif args.allocation_action == "recount":
            return self.run(lambda db: self._recount(db, args.period, args.fix))
        else:
            print("Error: Unknown allocation action")
            return 1

    async def _auto_assign(self, db, period_id: int) -> None:
        outcome = await allocation_service.auto_assign(db, period_id)
        print(f"✓ Assigned {outcome.assigned_count} student(s)")
        for assignment in outcome.assignments:
            print(f"  registration {assignment['registration_id']} -> lecturer {assignment['lecturer_id']}")
        if outcome.failures:
            print(f"✗ {len(outcome.failures)} student(s) could not be assigned")
            for failure in outcome.failures:
                print(f"  registration {failure.registration_id} (student {failure.student_id}): {failure.reason}")

    async def _recount(self, db, period_id: int, fix: bool) -> None:
        drift = await capacity_ledger.recount_allocation(db, period_id, fix=fix)
        if not drift:
            print("✓ All allocation counters match their registrations")
            return
        print(f"{'Lecturer':<10} {'Stored':<8} {'Actual':<8}")
        print("-" * 28)
        for row in drift:
            print(f"{row['lecturer_id']:<10} {row['stored']:<8} {row['actual']:<8}")
        if fix:
            print(f"✓ Repaired {len(drift)} counter(s)")
