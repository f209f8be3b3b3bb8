import unittest
from datetime import date

from mercado_obras import create_app
from mercado_obras.config import Config
from mercado_obras.db import close_db, get_db
from mercado_obras.infrastructure.repositories import ProposalRepository, StatusEventRepository
from mercado_obras.scheduler import ProposalExpiryScheduler, _should_start_scheduler
from tests.helpers.marketplace import quote_cement_and_sand, seed_marketplace
from tests.helpers.temp_db import TempDbSandbox


class ProposalExpirySchedulerTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="expiry_scheduler")
        self.app = create_app(self._temp_db.make_config(Config, EXPIRY_SCHEDULER_INTERVAL_SECONDS=5))
        with self.app.app_context():
            db = get_db()
            self.seed = seed_marketplace(db)
            self.quotation_id, _, _ = quote_cement_and_sand(db, self.seed)
            db.execute(
                "UPDATE proposals SET valid_until = '2026-10-01' WHERE supplier_id = ?",
                (self.seed.supplier_a_id,),
            )
            db.commit()
            close_db()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def _statuses(self) -> dict:
        with self.app.app_context():
            rows = ProposalRepository().list_for_quotation(get_db(), self.quotation_id)
            close_db()
        return {row["supplier_id"]: row["status"] for row in rows}

    def test_run_once_expires_overdue_pending_proposals(self) -> None:
        scheduler = ProposalExpiryScheduler(self.app, today_fn=lambda: date(2026, 10, 19))

        expired = scheduler.run_once()

        self.assertEqual([row["supplier_id"] for row in expired], [self.seed.supplier_a_id])
        self.assertEqual(
            self._statuses(),
            {self.seed.supplier_a_id: "expired", self.seed.supplier_b_id: "pending"},
        )
        with self.app.app_context():
            events = StatusEventRepository().list_for_entity(get_db(), entity="proposal", entity_id=expired[0]["id"])
            close_db()
        self.assertEqual(events[0]["to_status"], "expired")
        self.assertEqual(events[0]["reason"], "validade_vencida")

        self.assertEqual(scheduler.run_once(), [])

    def test_proposals_still_valid_are_kept(self) -> None:
        scheduler = ProposalExpiryScheduler(self.app, today_fn=lambda: date(2026, 10, 1))
        self.assertEqual(scheduler.run_once(), [])
        self.assertEqual(set(self._statuses().values()), {"pending"})

    def test_interval_is_clamped(self) -> None:
        self.assertEqual(ProposalExpiryScheduler(self.app).interval_seconds, 30)

    def test_scheduler_does_not_start_under_tests(self) -> None:
        self.assertFalse(_should_start_scheduler(self.app))
        self.assertNotIn("expiry_scheduler", self.app.extensions)


if __name__ == "__main__":
    unittest.main()
