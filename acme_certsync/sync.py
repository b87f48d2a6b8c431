"""
Push issued certificates to an external system that terminates TLS.

Every name of every certificate is compared with the external host's leaf
thumbprint; only hosts that are missing or out of date are written. Running
a reconciliation twice in a row therefore writes nothing the second time.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from cryptography import x509

from acme_certsync import certificate, monitoring
from acme_certsync.exceptions import SyncError
from acme_certsync.store import Certificate, Store


@dataclass
class Host:
    """A host as seen by the external system."""

    domain: str
    certificate_pem: str
    private_key_pem: str

    def decode_certificates(self) -> list[x509.Certificate]:
        """
        Parse the host's certificate bundle, leaf first.

        Raises:
            SyncError: If the bundle is malformed or holds no certificate.
        """
        try:
            certs = certificate.parse_certificate_chain(self.certificate_pem or "")
        except ValueError as e:
            raise SyncError(self.domain, f"error decoding certificate: {e}") from e

        if not certs:
            raise SyncError(self.domain, "no certificate data found")
        return certs

    def thumbprint(self) -> str:
        return certificate.thumbprint(self.decode_certificates()[0])


class HostClient(Protocol):
    def get_hosts(self) -> list[Host]: ...

    def get_host(self, domain: str) -> Host | None: ...

    def put_host(self, host: Host) -> None: ...


class Reconciler:
    def __init__(
        self,
        client: HostClient,
        store: Store | None = None,
        logger: logging.Logger | None = None,
    ):
        self.client = client
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    def reconcile_certificate(self, cert: Certificate) -> list[str]:
        """
        Push ``cert`` to every host it covers that does not already serve it.

        Returns:
            list[str]: Names of the hosts that were written.
        """
        pushed = []
        for domain in cert.all_names():
            self.logger.debug(
                f"Syncing certificate with external system: {domain} (thumbprint {cert.thumbprint})"
            )

            host = self.client.get_host(domain)
            if host is not None:
                external = host.thumbprint()
                self.logger.debug(f"Found certificate in external system: {domain} ({external})")
                if external == cert.thumbprint:
                    continue

            self.client.put_host(
                Host(
                    domain=domain,
                    certificate_pem=cert.certificate_chain.decode("ascii"),
                    private_key_pem=cert.private_key.decode("ascii"),
                )
            )
            self.logger.info(f"Pushed certificate for {domain} to external system")
            pushed.append(domain)

        return pushed

    def reconcile(self, certs: Iterable[Certificate]) -> list[str]:
        """
        Reconcile several certificates; the first failing host aborts the run.

        Returns:
            list[str]: Names of all hosts that were written.
        """
        pushed = []
        with monitoring.timer("Reconcile certificates", self.logger):
            for cert in certs:
                pushed.extend(self.reconcile_certificate(cert))

        if pushed:
            self.logger.info(f"Updated {len(pushed)} host(s) in external system")
        else:
            self.logger.info("External system is up to date")
        return pushed

    def reconcile_all(self) -> list[str]:
        """Reconcile every certificate in the store."""
        if self.store is None:
            raise ValueError("A store is required to reconcile all certificates")
        return self.reconcile(self.store.get_certificates())
