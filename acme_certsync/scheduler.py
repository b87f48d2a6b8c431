"""
Periodic renewal of certificates that are close to expiry.
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from acme_certsync import monitoring
from acme_certsync.exceptions import RenewalError
from acme_certsync.issuance import CertificateIssuer
from acme_certsync.store import Certificate, Store
from acme_certsync.sync import Reconciler

DEFAULT_PERIOD = timedelta(hours=1)
DEFAULT_BEFORE = timedelta(days=7)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RenewalScheduler:
    def __init__(
        self,
        issuer: CertificateIssuer,
        store: Store,
        reconciler: Reconciler | None = None,
        logger: logging.Logger | None = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.issuer = issuer
        self.store = store
        self.reconciler = reconciler
        self.logger = logger or logging.getLogger(__name__)
        self.now = now
        self._stop = threading.Event()

    def expiring(self, before: timedelta) -> list[Certificate]:
        """Stored certificates that expire within ``before`` from now."""
        threshold = self.now() + before
        return [cert for cert in self.store.get_certificates() if cert.expires < threshold]

    def scan_and_renew(self, before: timedelta) -> list[Certificate]:
        """
        Re-issue every certificate expiring within ``before``.

        Each certificate is renewed on its own: a failure is logged and the
        scan carries on with the rest.

        Returns:
            list[Certificate]: The renewed certificates.

        Raises:
            RenewalError: If any certificate failed; ``renewed`` holds the
                certificates re-issued by the same scan.
        """
        renewed: list[Certificate] = []
        failed: list[str] = []
        for cert in self.expiring(before):
            self.logger.info(f"Certificate for {cert.domain} expires {cert.expires.isoformat()}, renewing")
            try:
                renewed.extend(self.issuer.issue_or_renew(cert.all_names()))
            except Exception:
                self.logger.exception(f"Failed to renew certificate for {cert.domain}")
                failed.append(cert.domain)

        if failed:
            raise RenewalError(failed, renewed)
        return renewed

    def reconcile(self, renewed: list[Certificate]) -> None:
        """Reconcile all stored certificates if anything was renewed."""
        if renewed and self.reconciler is not None:
            self.reconciler.reconcile(self.store.get_certificates())

    def run_once(self, before: timedelta) -> list[Certificate]:
        """
        One tick of the renewal loop. Failures are logged, never raised.

        After a tick that renewed anything, all stored certificates are
        reconciled with the external system, even if other renewals failed.
        """
        renewed: list[Certificate] = []
        try:
            with monitoring.timer("Renewal check", self.logger):
                try:
                    renewed = self.scan_and_renew(before)
                except RenewalError as e:
                    renewed = e.renewed
                    self.logger.error(f"Renewal check failed, will retry next period: {e}")
                self.reconcile(renewed)
        except Exception:
            self.logger.exception("Renewal check failed, will retry next period")
        return renewed

    def run_forever(self, period: timedelta = DEFAULT_PERIOD, before: timedelta = DEFAULT_BEFORE) -> None:
        """Run ``run_once`` every ``period`` until ``stop`` is called."""
        self.logger.info(
            f"Watching certificates every {period}, renewing those expiring within {before}"
        )
        while not self._stop.is_set():
            self.run_once(before)
            if self._stop.wait(period.total_seconds()):
                break
        self.logger.info("Renewal loop stopped")

    def stop(self) -> None:
        """Stop the loop; it exits before the next tick starts."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()
