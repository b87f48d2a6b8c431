"""
ACME v2 resources (RFC 8555): orders, authorizations and challenges.
"""

import logging
import time
from typing import TYPE_CHECKING, Any

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from acme_certsync import utils
from acme_certsync.exceptions import ProtocolError

if TYPE_CHECKING:
    from acme_certsync.acme import AcmeClient

logger = logging.getLogger(__name__)


def check_response(r: Any, expected: tuple[int, ...], action: str) -> None:
    """Raise ``ProtocolError`` with the ACME problem type if ``r`` failed."""
    if r.status_code in expected:
        return

    detail = None
    try:
        problem = r.json()
        detail = problem.get("type")
        message = problem.get("detail") or r.text
    except ValueError:
        message = r.text
    raise ProtocolError(f"Failed to {action}: {message}", status_code=r.status_code, detail=detail)


def retry_after(r: Any, default: int) -> int:
    """Seconds from a Retry-After header; HTTP dates fall back to ``default``."""
    try:
        return int(r.headers.get("Retry-After", default))
    except (TypeError, ValueError):
        return default


class Resource:
    """Base class representing a generic ACME resource."""

    POLL_INTERVAL = 1

    def __init__(self, client: "AcmeClient", url: str, data: dict[str, Any] | None = None):
        self.client = client
        self.url = url
        self._data: dict[str, Any] | None = data
        self._retry_after = time.monotonic()

    @property
    def status(self) -> str:
        if not self._data:
            return ""
        return self._data.get("status", "")

    def get_json_response(self, r: Any) -> dict[str, Any]:
        """
        Parse the JSON body of a response; 204 yields an empty dict.

        Raises:
            ProtocolError: If the response is not valid JSON.
        """
        try:
            if r.status_code == 204:
                return {}
            return r.json()
        except ValueError:
            raise ProtocolError(f"Invalid JSON response: {r.text}") from None

    def update(self) -> None:
        """
        Refresh the resource with POST-as-GET.

        Raises:
            ProtocolError: If the server refuses the request or returns no data.
        """
        r = self.client.signed_request(self.url, payload=None)
        check_response(r, (200, 202), f"update {self.url}")

        data = self.get_json_response(r)
        if not data:
            raise ProtocolError(f"Empty response for {self.url}")

        self._data = data
        self._retry_after = time.monotonic() + retry_after(r, self.POLL_INTERVAL)

    def poll_until_not(self, statuses: set[str]) -> None:
        """
        Poll the resource until its status leaves ``statuses``.

        Waits between polls use the client's ``sleep``.
        """
        while self.status in statuses:
            logger.debug(f"Polling {self}, current status: {self.status}")
            delay = self._retry_after - time.monotonic()
            if delay > 0:
                self.client.sleep(delay)
            self.update()

    def __getitem__(self, item: str) -> Any:
        if not self._data:
            self.update()

        if self._data is None:
            raise ProtocolError(f"No data for {self.url}")

        return self._data.get(item)

    def __repr__(self) -> str:
        data = repr(self._data) if self._data else "..."
        return f"<{self.__class__.__name__} {self.url} {data}>"


class Challenge(Resource):
    """Class representing an ACME challenge."""

    @property
    def type(self) -> str:
        return self["type"] or ""

    @property
    def token(self) -> str:
        return self["token"] or ""

    def respond(self) -> None:
        """Tell the server the challenge response is in place."""
        r = self.client.signed_request(self.url, {})
        check_response(r, (200,), "respond to challenge")
        self._data = self.get_json_response(r)

    def error_detail(self) -> str:
        error = (self._data or {}).get("error") or {}
        return error.get("detail", "")


class Authorization(Resource):
    """Class representing an ACME authorization."""

    @property
    def identifier(self) -> dict[str, Any]:
        return self["identifier"]

    @property
    def challenges(self) -> list[Challenge]:
        if not self._data:
            self.update()
        if not self._data:
            raise ProtocolError(f"No data for authorization {self.url}")

        return [
            Challenge(self.client, challenge["url"], challenge)
            for challenge in self._data.get("challenges", [])
        ]

    def find_challenge(self, challenge_type: str) -> Challenge | None:
        for challenge in self.challenges:
            if challenge.type == challenge_type:
                return challenge
        return None


class Order(Resource):
    """Class representing an ACME order."""

    @property
    def authorizations(self) -> list[Authorization]:
        if not self._data:
            raise ProtocolError("Order data is None")

        return [Authorization(self.client, url) for url in self._data.get("authorizations", [])]

    def finalize(self, csr: x509.CertificateSigningRequest) -> None:
        """
        Finalize the order with the provided CSR.

        Raises:
            ProtocolError: If the order is not in the "ready" state or finalization fails.
        """
        logger.debug(f"status: {self.status}")
        if self.status != "ready":
            raise ProtocolError(f"Cannot finalize order in state: {self.status}")

        if not self._data:
            raise ProtocolError("Order data is None")

        csr_b64 = utils.b64url(csr.public_bytes(serialization.Encoding.DER))
        r = self.client.signed_request(self._data.get("finalize", ""), {"csr": csr_b64})
        check_response(r, (200,), "finalize order")
        self._data = self.get_json_response(r)

    def certificate(self) -> str:
        """
        Download the issued certificate chain.

        Returns:
            str: Certificate chain in PEM format, leaf first.

        Raises:
            ProtocolError: If the order is not in the "valid" state.
        """
        if self.status != "valid":
            raise ProtocolError(f"Cannot download certificate in state: {self.status}")

        if not self._data:
            raise ProtocolError("Order data is None")

        r = self.client.signed_request(self._data.get("certificate", ""))
        check_response(r, (200,), "download certificate")
        return r.text
