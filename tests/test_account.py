"""Tests for ACME account bootstrap."""

import pytest
from cryptography.fernet import Fernet

from acme_certsync import secret, utils
from acme_certsync.account import AccountBootstrapper
from acme_certsync.exceptions import ProtocolError


@pytest.fixture
def bootstrapper(kv_store, endpoint, box):
    return AccountBootstrapper(kv_store, endpoint, box)


def test_creates_account_on_first_use(bootstrapper, endpoint, kv_store, box, account_key):
    account = bootstrapper.initialize("ops@example.com", accept_terms=True)

    assert endpoint.registered == [("ops@example.com", True)]
    stored = kv_store.get_account("ops@example.com")
    assert stored.uri == account.uri
    assert stored.key != utils.private_key_to_der(account_key)
    assert box.open(stored.key) == utils.private_key_to_der(account_key)


def test_reuses_stored_account(bootstrapper, endpoint):
    first = bootstrapper.initialize("ops@example.com", accept_terms=True)
    second = bootstrapper.initialize("ops@example.com", accept_terms=True)

    assert len(endpoint.registered) == 1
    assert second.uri == first.uri
    assert second.key.private_numbers() == first.key.private_numbers()
    assert endpoint.used == [second]


def test_terms_not_accepted(bootstrapper, kv_store):
    with pytest.raises(ProtocolError):
        bootstrapper.initialize("ops@example.com", accept_terms=False)

    assert kv_store.get_account("ops@example.com") is None


def test_wrong_seal_key(bootstrapper, kv_store, endpoint):
    bootstrapper.initialize("ops@example.com", accept_terms=True)
    other = AccountBootstrapper(kv_store, endpoint, secret.FernetBox(Fernet.generate_key()))

    with pytest.raises(ValueError, match="Unable to open sealed value"):
        other.initialize("ops@example.com", accept_terms=True)
