import os
import unittest
from unittest.mock import Mock

from mercado_obras import create_app
from mercado_obras.config import Config
from mercado_obras.db import close_db, get_db
from mercado_obras.domain.contracts import Attachment
from mercado_obras.errors import IntegrationError
from mercado_obras.infrastructure.repositories import NotificationRepository
from mercado_obras.integrations.mailer import EmailSender
from mercado_obras.integrations.notifications import Notifier
from mercado_obras.integrations.retry import call_with_retry
from mercado_obras.integrations.storage import LocalFileStorage
from mercado_obras.observability import metrics_snapshot
from tests.helpers.marketplace import PDF_BYTES, seed_marketplace
from tests.helpers.temp_db import TempDbSandbox


class _FlakyRepository(NotificationRepository):
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def create(self, db, **kwargs) -> int:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("database is locked")
        return super().create(db, **kwargs)


class CallWithRetryTest(unittest.TestCase):
    def test_retries_then_succeeds(self) -> None:
        outcomes = [RuntimeError("falha"), "ok"]
        sleeps = []

        def operation():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = call_with_retry(operation, attempts=3, backoff_ms=250, sleep_fn=sleeps.append)
        self.assertEqual(result, "ok")
        self.assertEqual(sleeps, [0.25])

    def test_last_failure_is_raised(self) -> None:
        operation = Mock(side_effect=ValueError("sempre"))
        with self.assertRaises(ValueError):
            call_with_retry(operation, attempts=2, backoff_ms=0, sleep_fn=lambda _: None)
        self.assertEqual(operation.call_count, 2)

    def test_unlisted_errors_are_not_retried(self) -> None:
        operation = Mock(side_effect=KeyError("x"))
        with self.assertRaises(KeyError):
            call_with_retry(operation, attempts=3, retry_on=(ValueError,), sleep_fn=lambda _: None)
        self.assertEqual(operation.call_count, 1)


class IntegrationsWithAppTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="integrations")
        self.app = create_app(self._temp_db.make_config(Config))
        self._ctx = self.app.app_context()
        self._ctx.push()
        self.db = get_db()
        self.seed = seed_marketplace(self.db)

    def tearDown(self) -> None:
        close_db()
        self._ctx.pop()
        self._temp_db.cleanup()

    def test_notifier_retries_transient_failures(self) -> None:
        repository = _FlakyRepository(failures=1)
        notifier = Notifier(repository, attempts=2, backoff_ms=0, sleep_fn=lambda _: None)

        self.assertTrue(notifier.notify(self.db, recipient_id=self.seed.client_id, title="Oi", message="Teste"))
        self.assertEqual(repository.calls, 2)
        self.assertEqual(len(NotificationRepository().list_for_user(self.db, self.seed.client_id)), 1)

    def test_notifier_failure_never_reaches_the_caller(self) -> None:
        before = metrics_snapshot()["notifications"]["by_channel"].get("in_app", 0)
        notifier = Notifier(_FlakyRepository(failures=5), attempts=2, backoff_ms=0, sleep_fn=lambda _: None)

        with self.assertLogs("mercado_obras", level="WARNING") as logs:
            delivered = notifier.notify(self.db, recipient_id=self.seed.client_id, title="Oi", message="Teste")

        self.assertFalse(delivered)
        self.assertTrue(any("notification_failed" in line for line in logs.output))
        self.assertEqual(metrics_snapshot()["notifications"]["by_channel"]["in_app"], before + 1)
        self.assertFalse(Notifier().notify(self.db, recipient_id=None, title="Oi", message="Teste"))

    def test_email_backends(self) -> None:
        logged = EmailSender.from_config(self.app.config).send_email("compras@alfa.com.br", "Assunto", "<p>Oi</p>")
        self.assertTrue(logged.success)
        self.assertTrue(logged.message_id)

        missing = EmailSender().send_email("  ", "Assunto", "<p>Oi</p>")
        self.assertEqual(missing.error, "recipient_missing")

        unsupported = EmailSender(backend="pombo").send_email("a@b.com", "Assunto", "<p>Oi</p>")
        self.assertEqual(unsupported.error, "backend_unsupported:pombo")

        mailer = Mock()
        sent = EmailSender(backend="smtp", sender="nao-responda@mercadoobras.com.br", mailer=mailer).send_email(
            "vendas@depositoa.com.br", "Novo pedido", "<p>Pedido</p>"
        )
        self.assertTrue(sent.success)
        message = mailer.send.call_args[0][0]
        self.assertEqual(message.recipients, ["vendas@depositoa.com.br"])
        self.assertEqual(message.subject, "Novo pedido")

        mailer.send.side_effect = OSError("connection refused")
        failed = EmailSender(backend="smtp", sender="nao-responda@mercadoobras.com.br", mailer=mailer).send_email(
            "vendas@depositoa.com.br", "Novo pedido", "<p>Pedido</p>"
        )
        self.assertFalse(failed.success)
        self.assertIn("connection refused", failed.error)

    def test_local_storage_round_trip(self) -> None:
        storage = LocalFileStorage.from_config(self.app.config)
        url = storage.store(Attachment("../nota fiscal.pdf", "application/pdf", PDF_BYTES), prefix="pedido7_invoice_")

        self.assertTrue(url.startswith("/uploads/pedido7_invoice_"))
        self.assertTrue(url.endswith("_nota_fiscal.pdf"))
        path = storage.path_for(url)
        self.assertEqual(os.path.dirname(path), self._temp_db.upload_dir)
        with open(path, "rb") as handle:
            self.assertEqual(handle.read(), PDF_BYTES)

        storage.delete(url)
        self.assertFalse(os.path.exists(path))
        with self.assertLogs("mercado_obras", level="WARNING"):
            storage.delete(url)

    def test_storage_write_failure_is_an_integration_error(self) -> None:
        blocker = os.path.join(self._temp_db.upload_dir, "ocupado")
        os.makedirs(self._temp_db.upload_dir, exist_ok=True)
        with open(blocker, "wb") as handle:
            handle.write(b"x")
        storage = LocalFileStorage(blocker)

        with self.assertLogs("mercado_obras", level="ERROR"):
            with self.assertRaises(IntegrationError) as ctx:
                storage.store(Attachment("nota.pdf", "application/pdf", PDF_BYTES))
        self.assertEqual(ctx.exception.code, "storage_unavailable")
        self.assertEqual(ctx.exception.http_status, 502)


if __name__ == "__main__":
    unittest.main()
