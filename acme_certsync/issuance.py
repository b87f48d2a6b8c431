"""
Certificate issuance and renewal.

One certificate is kept per registrable domain. Requesting names for a
domain that already has a certificate re-issues it with the union of the
stored and requested alternative names, so names are never dropped.

The read-merge-write of alternative names is not atomic: only one instance
may write to a store at a time. Two instances issuing for the same
registrable domain concurrently can lose each other's names.
"""

import logging
from collections.abc import Iterable

from acme_certsync import certificate
from acme_certsync.acme import Endpoint
from acme_certsync.authorization import Authorizer, group_domains, merge_sans
from acme_certsync.store import Certificate, Store


class CertificateIssuer:
    def __init__(
        self,
        endpoint: Endpoint,
        store: Store,
        authorizer: Authorizer,
        logger: logging.Logger | None = None,
    ):
        self.endpoint = endpoint
        self.store = store
        self.authorizer = authorizer
        self.logger = logger or logging.getLogger(__name__)

    def issue_or_renew(self, domains: Iterable[str]) -> list[Certificate]:
        """
        Authorize ``domains`` and issue one certificate per registrable domain.

        The first authorization failure aborts before anything is issued. A
        failure while issuing aborts the remaining groups; certificates
        already stored earlier in the batch are kept.

        Returns:
            list[Certificate]: The stored certificates, in group order.
        """
        names: list[str] = []
        for domain in domains:
            name = domain.strip().rstrip(".").lower()
            if name and name not in names:
                names.append(name)
        if not names:
            raise ValueError("At least one domain is required")

        self.logger.info(f"Create new certificate for domains: {', '.join(names)}")

        groups = group_domains(names)
        for name in names:
            self.authorizer.authorize(name)

        issued = []
        for domain, sans in groups.items():
            existing = self.store.get_certificate(domain)
            if existing is not None:
                sans = merge_sans(domain, sans, existing.alternative_names)

            issued.append(self._issue(domain, sans))

        return issued

    def _issue(self, domain: str, sans: set[str]) -> Certificate:
        self.logger.info(f"Requesting certificate for {domain} (alternative names: {sorted(sans)})")

        result = self.endpoint.create_certificate(domain, sorted(sans))

        cert = Certificate(
            domain=domain,
            alternative_names=sans,
            expires=certificate.expires(result.leaf),
            certificate_chain=result.chain_pem,
            private_key=result.private_key_pem,
            thumbprint=certificate.thumbprint(result.leaf),
        )
        self.store.put_certificate(cert)

        self.logger.info(f"Stored certificate for {domain}, expires {cert.expires.isoformat()}")
        return cert
