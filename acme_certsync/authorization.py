"""
Domain authorization and grouping of domains into certificates.

Each domain moves through ``UNAUTHORIZED -> CHALLENGE_PENDING -> AUTHORIZED``.
``begin_authorize`` and ``complete_authorize_uri`` can be driven separately,
e.g. when the challenge is served by another process and completion is
triggered later from the command line.
"""

import enum
import logging
import posixpath
import time
from collections.abc import Callable, Iterable

from publicsuffixlist import PublicSuffixList

from acme_certsync.acme import Endpoint, HttpChallenge
from acme_certsync.exceptions import ProtocolError
from acme_certsync.retry import linear_backoff, retry
from acme_certsync.store import Challenge, Store

AUTH_RETRIES = 5
BACKOFF_SECONDS = 0.3

_psl = PublicSuffixList()


class AuthorizationState(enum.Enum):
    UNAUTHORIZED = "unauthorized"
    CHALLENGE_PENDING = "challenge-pending"
    AUTHORIZED = "authorized"


def registrable_domain(domain: str) -> str:
    """
    Public suffix plus one label, e.g. ``example.co.uk`` for ``www.example.co.uk``.

    Raises:
        ValueError: If the name is empty or is itself a public suffix.
    """
    name = domain.strip().rstrip(".").lower()
    reg = _psl.privatesuffix(name) if name else None
    if not reg:
        raise ValueError(f"Can't get registrable domain for '{domain}'")
    return reg


def group_domains(domains: Iterable[str]) -> dict[str, set[str]]:
    """
    Group hostnames by registrable domain.

    A name equal to its registrable domain only creates the group; every
    other name becomes an alternative name of its group. Groups appear in the
    order their first member appears in ``domains``.
    """
    groups: dict[str, set[str]] = {}
    for domain in domains:
        name = domain.strip().rstrip(".").lower()
        reg = registrable_domain(name)
        sans = groups.setdefault(reg, set())
        if name != reg:
            sans.add(name)
    return groups


def merge_sans(domain: str, *sans: Iterable[str]) -> set[str]:
    """Union of alternative name sets, never containing ``domain`` itself."""
    merged: set[str] = set()
    for names in sans:
        merged.update(names)
    merged.discard(domain)
    return merged


class Authorizer:
    """Proves control of domains to the ACME endpoint."""

    def __init__(
        self,
        endpoint: Endpoint,
        store: Store,
        logger: logging.Logger | None = None,
        attempts: int = AUTH_RETRIES,
        backoff: Callable[[int], float] = linear_backoff(BACKOFF_SECONDS),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.endpoint = endpoint
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self.attempts = attempts
        self.backoff = backoff
        self.sleep = sleep
        self._states: dict[str, AuthorizationState] = {}
        self._pending: dict[str, str] = {}

    def state(self, domain: str) -> AuthorizationState:
        return self._states.get(domain, AuthorizationState.UNAUTHORIZED)

    def begin_authorize(self, domain: str) -> HttpChallenge | None:
        """
        Request a challenge for ``domain`` and store its response for serving.

        Returns:
            HttpChallenge | None: None when the domain needs no challenge.
        """
        self.logger.info(f"Begin authorization of domain: {domain}")

        challenge = self.endpoint.begin_authorize(domain)
        if challenge is None:
            self.logger.debug(f"No authorization required for {domain}")
            self._states[domain] = AuthorizationState.AUTHORIZED
            return None

        self.logger.debug(
            f"Challenge received for {domain}: uri={challenge.uri} path={challenge.path}"
        )

        self.store.put_challenge(
            Challenge(key=posixpath.basename(challenge.path), value=challenge.response)
        )
        self._states[domain] = AuthorizationState.CHALLENGE_PENDING
        self._pending[challenge.uri] = domain
        return challenge

    def complete_authorize(self, challenge: HttpChallenge) -> None:
        """
        Ask the endpoint to validate ``challenge``, retrying while the
        response propagates. The last error is raised on exhaustion.
        """
        retry(
            lambda: self.endpoint.complete_authorize(challenge),
            attempts=self.attempts,
            backoff=self.backoff,
            retry_on=ProtocolError,
            sleep=self.sleep,
            log=self.logger,
        )
        self._states[challenge.domain] = AuthorizationState.AUTHORIZED
        self._pending.pop(challenge.uri, None)
        self.logger.info(f"Authorization of domain successful: {challenge.domain}")

    def complete_authorize_uri(self, uri: str) -> None:
        """Complete an authorization begun by an earlier invocation."""
        self.endpoint.complete_authorize_uri(uri)
        domain = self._pending.pop(uri, None)
        if domain is not None:
            self._states[domain] = AuthorizationState.AUTHORIZED
        self.logger.info(f"Authorization of challenge successful: {uri}")

    def authorize(self, domain: str) -> None:
        challenge = self.begin_authorize(domain)
        if challenge is not None:
            self.complete_authorize(challenge)
