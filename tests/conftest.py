from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from acme_certsync import acme, models, secret, store, sync, utils
from acme_certsync.exceptions import ProtocolError

DIRECTORY_URL = "https://acme.test/directory"
DIRECTORY = {
    "newNonce": "https://acme.test/new-nonce",
    "newAccount": "https://acme.test/new-acct",
    "newOrder": "https://acme.test/new-order",
    "meta": {"termsOfService": "https://acme.test/terms.pdf"},
}


def make_certificate(key, domain, sans=(), not_after=None):
    """Self-signed certificate for ``domain`` and ``sans``, PEM encoded."""
    now = datetime.now(timezone.utc)
    not_after = not_after or now + timedelta(days=90)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(not_after)
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in [domain, *sans]]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)


class FakeEndpoint:
    """In-memory ``Endpoint`` issuing self-signed certificates."""

    def __init__(self, key, lifetime=timedelta(days=90)):
        self.key = key
        self.lifetime = lifetime
        self.authorized: set[str] = set()
        self.failures: dict[str, int] = {}
        self.registered: list[tuple[str, bool]] = []
        self.used: list[acme.AccountKey] = []
        self.begun: list[str] = []
        self.completed: list[str] = []
        self.issued: list[tuple[str, list[str]]] = []
        self.refused: set[str] = set()

    def register_account(self, email, accept_terms):
        if not accept_terms:
            raise ProtocolError("The terms of service must be accepted to register")
        self.registered.append((email, accept_terms))
        return acme.AccountKey(uri=f"https://acme.test/acct/{len(self.registered)}", email=email, key=self.key)

    def use_account(self, account):
        self.used.append(account)

    def begin_authorize(self, domain):
        self.begun.append(domain)
        if domain in self.authorized:
            return None
        token = f"token-{domain.replace('.', '-')}"
        return acme.HttpChallenge(
            domain=domain,
            uri=f"https://acme.test/chall/{domain}",
            token=token,
            path=f".well-known/acme-challenge/{token}",
            response=f"{token}.thumbprint",
        )

    def complete_authorize(self, challenge):
        self.complete_authorize_uri(challenge.uri)
        self.authorized.add(challenge.domain)

    def complete_authorize_uri(self, uri):
        self.completed.append(uri)
        if self.failures.get(uri, 0) > 0:
            self.failures[uri] -= 1
            raise ProtocolError(f"Challenge validation failed: invalid {uri}")

    def create_certificate(self, domain, sans):
        if domain in self.refused:
            raise ProtocolError(f"Failed to finalize order: issuance refused for {domain}")
        self.issued.append((domain, list(sans)))
        pem = make_certificate(
            self.key, domain, sans, datetime.now(timezone.utc) + self.lifetime
        )
        return acme.IssuedCertificate(
            chain_pem=pem,
            private_key_pem=utils.private_key_to_pem(self.key),
            leaf=x509.load_pem_x509_certificate(pem),
        )


class FakeHostClient:
    """In-memory ``HostClient`` that records every write."""

    def __init__(self):
        self.hosts: dict[str, sync.Host] = {}
        self.writes: list[str] = []

    def get_hosts(self):
        return list(self.hosts.values())

    def get_host(self, domain):
        return self.hosts.get(domain)

    def put_host(self, host):
        self.writes.append(host.domain)
        self.hosts[host.domain] = host


@pytest.fixture(scope="session")
def account_key():
    """Fixture to generate a private RSA key for the tests."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def memory_backend():
    return store.MemoryBackend()


@pytest.fixture
def kv_store(memory_backend):
    """Fixture for a store kept in memory."""
    return store.KeyValueStore(memory_backend)


@pytest.fixture
def box():
    return secret.FernetBox(Fernet.generate_key())


@pytest.fixture
def endpoint(account_key):
    return FakeEndpoint(account_key)


@pytest.fixture
def host_client():
    return FakeHostClient()


@pytest.fixture
def acme_client(account_key):
    """Fixture to initialize an AcmeClient bound to an existing account."""
    client = acme.AcmeClient(account_key, directory_url=DIRECTORY_URL)
    client.use_account(acme.AccountKey(uri="https://acme.test/acct/1", email="ops@example.com", key=account_key))
    return client


@pytest.fixture
def order(acme_client):
    """Fixture to initialize an Order instance."""
    data = {
        "authorizations": ["https://acme.test/authz/1"],
        "finalize": "https://acme.test/order/1/finalize",
        "status": "ready",
    }
    return models.Order(acme_client, "https://acme.test/order/1", data)


@pytest.fixture
def requests_mock():
    """Fixture for requests-mock."""
    import requests_mock as rm

    with rm.Mocker() as m:
        yield m


@pytest.fixture
def acme_server(requests_mock):
    """Mocks the directory and nonce resources of the ACME server."""
    requests_mock.get(DIRECTORY_URL, json=DIRECTORY)
    requests_mock.head(DIRECTORY["newNonce"], headers={"Replay-Nonce": "nonce-1"})
    return requests_mock
