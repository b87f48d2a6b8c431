"""
ACME account bootstrap.
"""

import logging

from acme_certsync import utils
from acme_certsync.acme import AccountKey, Endpoint
from acme_certsync.secret import Box
from acme_certsync.store import Account, Store


class AccountBootstrapper:
    """Loads the account for a contact email, registering it on first use."""

    def __init__(
        self,
        store: Store,
        endpoint: Endpoint,
        secret_box: Box,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.endpoint = endpoint
        self.secret_box = secret_box
        self.logger = logger or logging.getLogger(__name__)

    def initialize(self, email: str, accept_terms: bool) -> AccountKey:
        """
        Bind the endpoint to the account for ``email``.

        Any error is returned to the caller unchanged; there is nothing useful
        to do without an account.
        """
        account = self.load(email)
        if account is not None:
            self.endpoint.use_account(account)
            self.logger.info(f"Using existing ACME account {account.uri} for {email}")
            return account

        self.logger.info(f"No account found for {email}, registering a new one")
        return self.create(email, accept_terms)

    def load(self, email: str) -> AccountKey | None:
        """Read and unseal the stored account for ``email``, if any."""
        stored = self.store.get_account(email)
        if stored is None:
            return None

        key = utils.load_private_key_der(self.secret_box.open(stored.key))
        return AccountKey(uri=stored.uri, email=stored.email, key=key)

    def create(self, email: str, accept_terms: bool) -> AccountKey:
        account = self.endpoint.register_account(email, accept_terms)

        self.store.put_account(
            Account(
                email=email,
                uri=account.uri,
                key=self.secret_box.seal(account.key_bytes),
            )
        )
        return account
