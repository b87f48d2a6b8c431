"""
Core library interface for acme-certsync.

``CertificateManager`` wires the store, the ACME client, the secret box and
the optional vulcand client together from a ``Config``.

Example usage:
    ```python
    from acme_certsync import CertificateManager, Config

    config = Config(email="ops@example.com", accept_tos=True, seal_key="...")

    with CertificateManager(config) as manager:
        # One certificate for example.com covering both names
        manager.new_certificate(["example.com", "www.example.com"])

        # Renew what expires within a week and push it to vulcand
        manager.renew_expiring()
    ```
"""

import logging
from collections.abc import Iterable
from datetime import timedelta

from acme_certsync import acme, secret, vulcand
from acme_certsync.account import AccountBootstrapper
from acme_certsync.authorization import Authorizer
from acme_certsync.config import Config
from acme_certsync.exceptions import RenewalError
from acme_certsync.issuance import CertificateIssuer
from acme_certsync.scheduler import RenewalScheduler
from acme_certsync.store import Certificate, FileBackend, KeyValueStore, Store
from acme_certsync.sync import HostClient, Reconciler


class CertificateManager:
    """
    High-level manager for ACME certificate operations.

    Collaborators not passed in are built lazily from the config.
    """

    def __init__(
        self,
        config: Config,
        store: Store | None = None,
        endpoint: acme.Endpoint | None = None,
        secret_box: secret.Box | None = None,
        host_client: HostClient | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

        self._store = store
        self._endpoint = endpoint
        self._secret_box = secret_box
        self._host_client = host_client

        self._account: acme.AccountKey | None = None
        self._authorizer: Authorizer | None = None
        self._issuer: CertificateIssuer | None = None
        self._scheduler: RenewalScheduler | None = None

    @property
    def store(self) -> Store:
        if self._store is None:
            self._store = KeyValueStore(
                FileBackend(self.config.store_path),
                prefix=self.config.store_prefix,
                logger=self.logger.getChild("store"),
            )
        return self._store

    @property
    def endpoint(self) -> acme.Endpoint:
        if self._endpoint is None:
            client = acme.AcmeClient(directory_url=self.config.acme_directory)
            client.add_headers({"User-Agent": self.config.user_agent})
            self._endpoint = client
        return self._endpoint

    @property
    def secret_box(self) -> secret.Box:
        if self._secret_box is None:
            self._secret_box = secret.FernetBox.from_key_string(self.config.seal_key)
        return self._secret_box

    @property
    def host_client(self) -> HostClient | None:
        if self._host_client is None and self.config.vulcand:
            client = vulcand.VulcandClient(self.config.vulcand, dry_run=self.config.dry_run)
            client.add_headers({"User-Agent": self.config.user_agent})
            self._host_client = client
        return self._host_client

    @property
    def account(self) -> acme.AccountKey:
        """The bound ACME account, loaded or registered on first access."""
        if self._account is None:
            self.config.validate()
            bootstrapper = AccountBootstrapper(
                self.store, self.endpoint, self.secret_box, logger=self.logger.getChild("account")
            )
            self._account = bootstrapper.initialize(self.config.email, self.config.accept_tos)
        return self._account

    @property
    def authorizer(self) -> Authorizer:
        if self._authorizer is None:
            self.account  # binds the endpoint to the account
            self._authorizer = Authorizer(
                self.endpoint, self.store, logger=self.logger.getChild("authorization")
            )
        return self._authorizer

    @property
    def issuer(self) -> CertificateIssuer:
        if self._issuer is None:
            self._issuer = CertificateIssuer(
                self.endpoint, self.store, self.authorizer, logger=self.logger.getChild("issuance")
            )
        return self._issuer

    @property
    def reconciler(self) -> Reconciler | None:
        client = self.host_client
        if client is None:
            return None
        return Reconciler(client, self.store, logger=self.logger.getChild("sync"))

    @property
    def scheduler(self) -> RenewalScheduler:
        if self._scheduler is None:
            self._scheduler = RenewalScheduler(
                self.issuer,
                self.store,
                reconciler=self.reconciler,
                logger=self.logger.getChild("scheduler"),
            )
        return self._scheduler

    def authorize(self, domain: str) -> None:
        self.authorizer.authorize(domain)

    def begin_authorize(self, domain: str) -> acme.HttpChallenge | None:
        return self.authorizer.begin_authorize(domain)

    def complete_authorize(self, uri: str) -> None:
        self.authorizer.complete_authorize_uri(uri)

    def new_certificate(self, domains: Iterable[str]) -> list[Certificate]:
        return self.issuer.issue_or_renew(domains)

    def certificates(self) -> list[Certificate]:
        return self.store.get_certificates()

    def renew_expiring(self, before: timedelta | None = None) -> list[Certificate]:
        """
        Renew certificates expiring within ``before`` and sync them.

        Unlike the watch loop, errors are raised to the caller. Certificates
        renewed before a failure are still synced.
        """
        scheduler = self.scheduler
        try:
            renewed = scheduler.scan_and_renew(self.config.before if before is None else before)
        except RenewalError as e:
            scheduler.reconcile(e.renewed)
            raise
        scheduler.reconcile(renewed)
        return renewed

    def renew_loop(self, period: timedelta | None = None, before: timedelta | None = None) -> None:
        self.scheduler.run_forever(
            self.config.period if period is None else period,
            self.config.before if before is None else before,
        )

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()

    def sync(self) -> list[str]:
        """
        Reconcile every stored certificate with the external system.

        Raises:
            ValueError: If no external system is configured.
        """
        reconciler = self.reconciler
        if reconciler is None:
            raise ValueError("No external system configured (--vulcand)")
        return reconciler.reconcile_all()

    def close(self) -> None:
        """Close HTTP sessions held by the default clients."""
        for client in (self._endpoint, self._host_client):
            close = getattr(client, "close", None)
            if close is not None:
                close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return f"<CertificateManager email={self.config.email} directory={self.config.acme_directory}>"
