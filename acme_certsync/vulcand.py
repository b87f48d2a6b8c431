"""
vulcand API client.

See https://docs.vulcand.io/api.html. Host key pairs are JSON byte arrays,
i.e. base64 strings on the wire.
"""

import base64
import logging
from typing import Any
from urllib.parse import quote

import requests

from acme_certsync.exceptions import SyncError
from acme_certsync.sync import Host

logger = logging.getLogger(__name__)


class VulcandClient:
    """
    ``HostClient`` for the vulcand reverse proxy.

    Attributes:
        http (requests.Session): A session object for making HTTP requests.
        dry_run (bool): If True, allow GET requests but only log writes.
    """

    def __init__(self, address: str, dry_run: bool = False, timeout: float = 30) -> None:
        self.address = address.rstrip("/")
        self.http = requests.Session()
        self.dry_run = dry_run
        self.timeout = timeout

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.http.close()

    def close(self) -> None:
        self.__exit__(None, None, None)

    def add_headers(self, headers: dict[str, str]) -> None:
        self.http.headers.update(headers)

    def _url(self, *parts: str) -> str:
        return "/".join([self.address, "v2", *(quote(p, safe="") for p in parts)])

    def _make_request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Make an HTTP request; in dry-run mode writes are logged and skipped.
        """
        method_upper = method.upper()

        if self.dry_run and method_upper not in ["GET", "HEAD"]:
            logger.warning(f"[DRY-RUN] Skipping {method_upper} request to {url}")
            mock_response = requests.Response()
            mock_response.status_code = 200
            mock_response._content = b'{"dry_run": true}'
            mock_response.headers["Content-Type"] = "application/json"
            return mock_response

        return self.http.request(method_upper, url, timeout=self.timeout, **kwargs)

    @staticmethod
    def _decode(value: Any) -> str:
        if not value:
            return ""
        return base64.b64decode(value).decode("ascii")

    def _to_host(self, data: dict[str, Any]) -> Host:
        key_pair = (data.get("Settings") or {}).get("KeyPair") or {}
        return Host(
            domain=data.get("Name", ""),
            certificate_pem=self._decode(key_pair.get("Cert")),
            private_key_pem=self._decode(key_pair.get("Key")),
        )

    def get_hosts(self) -> list[Host]:
        url = self._url("hosts")
        try:
            r = self._make_request("GET", url)
            r.raise_for_status()
            return [self._to_host(h) for h in r.json().get("Hosts") or []]
        except requests.exceptions.RequestException as e:
            raise SyncError("*", f"failed to list hosts: {e}") from e
        except ValueError as e:
            raise SyncError("*", f"invalid hosts response: {e}") from e

    def get_host(self, domain: str) -> Host | None:
        """
        Fetch a single host.

        Returns:
            Host | None: None if vulcand has no such host.
        """
        url = self._url("hosts", domain)
        try:
            r = self._make_request("GET", url)
            if r.status_code == 404:
                return None
            r.raise_for_status()
            return self._to_host(r.json())
        except requests.exceptions.RequestException as e:
            raise SyncError(domain, f"failed to get host: {e}") from e
        except ValueError as e:
            raise SyncError(domain, f"invalid host response: {e}") from e

    def put_host(self, host: Host) -> None:
        """Create or update ``host`` with its key pair."""
        payload = {
            "Host": {
                "Name": host.domain,
                "Settings": {
                    "KeyPair": {
                        "Cert": base64.b64encode(host.certificate_pem.encode("ascii")).decode("ascii"),
                        "Key": base64.b64encode(host.private_key_pem.encode("ascii")).decode("ascii"),
                    }
                },
            }
        }

        try:
            r = self._make_request("POST", self._url("hosts"), json=payload)
            if r.status_code >= 400:
                logger.error(f"Error response from vulcand for {host.domain}: {r.text}")
            r.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise SyncError(host.domain, f"failed to upsert host: {e}") from e
