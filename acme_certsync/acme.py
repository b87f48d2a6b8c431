"""
ACME v2 client (RFC 8555) and the endpoint interface the orchestrator uses.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from acme_certsync import certificate, models, utils
from acme_certsync.exceptions import ProtocolError
from acme_certsync.models import check_response

logger = logging.getLogger(__name__)

CHALLENGE_TYPE = "http-01"
CHALLENGE_PATH = ".well-known/acme-challenge"


@dataclass
class AccountKey:
    """ACME account bound to its signing key."""

    uri: str
    email: str
    key: rsa.RSAPrivateKey

    @property
    def key_bytes(self) -> bytes:
        return utils.private_key_to_der(self.key)


@dataclass
class HttpChallenge:
    """HTTP-01 challenge that must be served before authorization can complete."""

    domain: str
    uri: str
    token: str
    path: str
    response: str


@dataclass
class IssuedCertificate:
    chain_pem: bytes
    private_key_pem: bytes
    leaf: x509.Certificate


class Endpoint(Protocol):
    def register_account(self, email: str, accept_terms: bool) -> AccountKey: ...

    def use_account(self, account: AccountKey) -> None: ...

    def begin_authorize(self, domain: str) -> HttpChallenge | None: ...

    def complete_authorize(self, challenge: HttpChallenge) -> None: ...

    def complete_authorize_uri(self, uri: str) -> None: ...

    def create_certificate(self, domain: str, sans: list[str]) -> IssuedCertificate: ...


class AcmeClient:
    """Client for interacting with an ACME server."""

    DIRECTORY_URL = "https://acme-v02.api.letsencrypt.org/directory"
    TEST_DIRECTORY_URL = "https://acme-staging-v02.api.letsencrypt.org/directory"

    def __init__(
        self,
        account_key: rsa.RSAPrivateKey | None = None,
        staging: bool = False,
        directory_url: str | None = None,
        key_size: int = certificate.DEFAULT_KEY_SIZE,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the AcmeClient.

        Args:
            account_key: RSA key of an existing account (optional; see ``use_account``).
            staging: Use the Let's Encrypt staging directory.
            directory_url: Explicit directory URL, overrides ``staging``.
            key_size: Size of account and certificate keys generated by this client.
            sleep: Used to wait between polls of pending resources.
        """
        self.http = requests.Session()
        self.account_key = account_key
        self.staging = staging
        self.directory_url = directory_url or (
            self.TEST_DIRECTORY_URL if staging else self.DIRECTORY_URL
        )
        self.key_size = key_size
        self.sleep = sleep

        self._directory: dict[str, Any] | None = None
        self._nonce: str | None = None
        self._key_id: str = ""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.http.close()

    def close(self):
        """Close the HTTP session."""
        self.__exit__(None, None, None)

    def add_headers(self, headers: dict[str, str]) -> None:
        self.http.headers.update(headers)

    @property
    def key_thumbprint(self) -> str:
        """JWK thumbprint of the account key, used in key authorizations."""
        if self.account_key is None:
            raise ProtocolError("No account key bound to the client")
        return utils.json_thumbprint(utils.rsa_jwk_public(self.account_key))

    def directory(self) -> dict[str, Any]:
        """Fetch (once) and return the ACME directory document."""
        if not self._directory:
            try:
                r = self.http.get(self.directory_url)
                r.raise_for_status()
                self._directory = r.json()
            except (requests.exceptions.RequestException, ValueError) as e:
                raise ProtocolError(f"Unable to fetch ACME directory {self.directory_url}: {e}") from e
            logger.debug(f"Fetched directory: {self._directory}")

        return self._directory

    def url_for(self, resource: str) -> str:
        """
        Get the URL for a specific ACME resource.

        Raises:
            ProtocolError: If the directory does not list the resource.
        """
        url = self.directory().get(resource)
        if not url:
            raise ProtocolError(f"ACME directory has no '{resource}' resource")
        return url

    def register_account(self, email: str, accept_terms: bool) -> AccountKey:
        """
        Create a new account with a freshly generated key.

        Raises:
            ProtocolError: If the terms of service are required but not accepted,
                or the server refuses the registration.
        """
        terms = self.directory().get("meta", {}).get("termsOfService")
        if terms and not accept_terms:
            raise ProtocolError(f"The terms of service must be accepted to register: {terms}")

        self.account_key = certificate.generate_private_key(self.key_size)
        self._key_id = ""

        payload: dict[str, Any] = {"contact": [f"mailto:{email}"]}
        if accept_terms:
            payload["termsOfServiceAgreed"] = True

        r = self._signed_request(
            url=self.url_for("newAccount"),
            key={"alg": "RS256", "jwk": utils.rsa_jwk_public(self.account_key)},
            payload=payload,
        )
        check_response(r, (200, 201), "register account")

        self._key_id = r.headers["Location"]
        logger.info(f"Registered ACME account {self._key_id} for {email}")
        return AccountKey(uri=self._key_id, email=email, key=self.account_key)

    def use_account(self, account: AccountKey) -> None:
        """Bind an existing account to this client's session."""
        self.account_key = account.key
        self._key_id = account.uri
        logger.debug(f"Using ACME account {account.uri}")

    def lookup_account(self) -> str:
        """Find the account URL for the bound key (``onlyReturnExisting``)."""
        if self.account_key is None:
            raise ProtocolError("No account key bound to the client")

        r = self._signed_request(
            url=self.url_for("newAccount"),
            key={"alg": "RS256", "jwk": utils.rsa_jwk_public(self.account_key)},
            payload={"onlyReturnExisting": True},
        )
        check_response(r, (200,), "look up account")
        self._key_id = r.headers["Location"]
        return self._key_id

    def new_order(self, domain: str, additional_domains: list[str] | None = None) -> models.Order:
        """
        Create a new order for the specified domains.

        Args:
            domain: Primary domain name.
            additional_domains: Additional domain names to include in the order.

        Returns:
            models.Order: The created order.
        """
        all_domains = [domain]
        for additional_domain in additional_domains or []:
            if additional_domain not in all_domains:
                all_domains.append(additional_domain)

        payload = {"identifiers": [{"type": "dns", "value": d} for d in all_domains]}
        logger.debug(f"Creating new order with payload: {payload}")

        r = self.signed_request(self.url_for("newOrder"), payload)
        check_response(r, (201,), f"create order for {', '.join(all_domains)}")

        try:
            return models.Order(self, r.headers["Location"], r.json())
        except (KeyError, ValueError) as e:
            raise ProtocolError(f"Malformed order response: {e}") from e

    def begin_authorize(self, domain: str) -> HttpChallenge | None:
        """
        Request an HTTP-01 challenge for ``domain``.

        Returns:
            HttpChallenge | None: The challenge to serve, or None when the
            domain is already authorized for this account.
        """
        order = self.new_order(domain)
        authorizations = order.authorizations
        if not authorizations:
            raise ProtocolError(f"Order for {domain} has no authorizations")

        authorization = authorizations[0]
        authorization.update()
        if authorization.status == "valid":
            return None

        challenge = authorization.find_challenge(CHALLENGE_TYPE)
        if challenge is None:
            available = [c.type for c in authorization.challenges]
            raise ProtocolError(f"No {CHALLENGE_TYPE} challenge offered for {domain}; available: {available}")

        token = challenge.token
        return HttpChallenge(
            domain=domain,
            uri=challenge.url,
            token=token,
            path=f"{CHALLENGE_PATH}/{token}",
            response=f"{token}.{self.key_thumbprint}",
        )

    def complete_authorize(self, challenge: HttpChallenge) -> None:
        self.complete_authorize_uri(challenge.uri)

    def complete_authorize_uri(self, uri: str) -> None:
        """
        Ask the server to validate the challenge at ``uri`` and wait for the result.

        Raises:
            ProtocolError: If validation does not succeed.
        """
        challenge = models.Challenge(self, uri)
        challenge.respond()
        challenge.poll_until_not({"pending", "processing"})

        if challenge.status != "valid":
            raise ProtocolError(
                f"Challenge validation failed: {challenge.status} {challenge.error_detail()}".rstrip()
            )

    def create_certificate(self, domain: str, sans: list[str]) -> IssuedCertificate:
        """
        Order, finalize and download a certificate for ``domain`` and ``sans``.

        Every name must already be authorized.
        """
        private_key = certificate.generate_private_key(self.key_size)
        csr = certificate.generate_csr(domain, private_key, list(sans))

        order = self.new_order(domain, list(sans))
        for authorization in order.authorizations:
            authorization.update()
            if authorization.status != "valid":
                name = (authorization.identifier or {}).get("value", authorization.url)
                raise ProtocolError(f"Domain {name} is not authorized (status {authorization.status})")

        order.poll_until_not({"pending"})
        order.finalize(csr)
        order.poll_until_not({"processing"})
        if order.status != "valid":
            raise ProtocolError(f"Order finalization unsuccessful: {order.status}")

        pem = order.certificate()
        try:
            chain = certificate.parse_certificate_chain(pem)
        except ValueError as e:
            raise ProtocolError(f"Server returned an invalid certificate: {e}") from e
        if not chain:
            raise ProtocolError("Server returned no certificate")

        logger.info(f"Certificate issued for {domain} ({len(chain)} certificate(s) in chain)")
        return IssuedCertificate(
            chain_pem=pem.encode("ascii"),
            private_key_pem=utils.private_key_to_pem(private_key),
            leaf=chain[0],
        )

    def signed_request(
        self, url: str, payload: dict[str, Any] | None = None
    ) -> requests.Response:
        """
        Send a request signed with the account key ID.

        Args:
            url: URL for the request.
            payload: Payload data for the request. None for POST-as-GET.
        """
        if not self._key_id:
            logger.debug("Key ID not found. Looking up existing account.")
            self.lookup_account()

        return self._signed_request(
            url=url,
            key={"alg": "RS256", "kid": self._key_id},
            payload=payload,
        )

    def format_data(
        self, url: str, key: dict[str, Any], payload: dict[str, Any] | None
    ) -> dict[str, Any]:
        """Build the flattened JWS body for a request."""
        if self.account_key is None:
            raise ProtocolError("No account key bound to the client")

        protected_header = {"url": url, "nonce": self._nonce, **key}
        protected = utils.b64url(utils.json_encode(protected_header))

        # POST-as-GET uses an empty payload
        if payload is None:
            dumped_payload = ""
        else:
            dumped_payload = utils.b64url(utils.json_encode(payload))

        signing_input = f"{protected}.{dumped_payload}".encode("utf-8")
        signature = utils.b64url(
            self.account_key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())
        )

        return {
            "protected": protected,
            "payload": dumped_payload,
            "signature": signature,
        }

    def _signed_request(
        self, url: str, key: dict[str, Any], payload: dict[str, Any] | None
    ) -> requests.Response:
        """Send a signed request to the ACME server with nonce handling."""
        if not self._nonce:
            self._new_nonce()

        for attempt in range(2):  # try once, then retry if badNonce
            data = self.format_data(url, key, payload)
            headers = {"Content-Type": "application/jose+json"}

            logger.debug(f"Sending signed request to {url} (attempt {attempt + 1})")

            try:
                response = self.http.post(url, headers=headers, json=data)
            except requests.exceptions.RequestException as e:
                raise ProtocolError(f"Error sending request to {url}: {e}") from e

            new_nonce = response.headers.get("Replay-Nonce")
            if new_nonce:
                self._nonce = new_nonce

            if response.status_code == 400:
                try:
                    err = response.json()
                except ValueError:
                    err = {}
                if err.get("type") == "urn:ietf:params:acme:error:badNonce":
                    logger.warning("badNonce received, retrying once with new nonce")
                    self._new_nonce()
                    continue

            return response

        raise ProtocolError(f"ACME request to {url} failed after badNonce retry")

    def _new_nonce(self):
        """Get a new nonce from the ACME server."""
        url = self.url_for("newNonce")
        try:
            r = self.http.head(url)
            r.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ProtocolError(f"Unable to get nonce: {e}") from e

        self._nonce = r.headers["Replay-Nonce"]
