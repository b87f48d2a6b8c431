"""
Durable state: ACME account, issued certificates and pending challenges.

Records are kept in a flat key/value namespace::

    <prefix>/accounts/<email>
    <prefix>/certificates/<registrable domain>
    <prefix>/challenges/<token>

Accounts and certificates are JSON documents, challenges are the raw
response text. Read misses return ``None``.
"""

import base64
import json
import logging
import os
import posixpath
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from acme_certsync.exceptions import StorageError, ValidationError

ACCOUNTS_PATH = "accounts"
CERTIFICATES_PATH = "certificates"
CHALLENGES_PATH = "challenges"

DEFAULT_PREFIX = "certsync"


@dataclass
class Account:
    """ACME account; ``key`` is the sealed private key."""

    email: str
    uri: str
    key: bytes

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "Email": self.email,
                "URI": self.uri,
                "Key": base64.b64encode(self.key).decode("ascii"),
            }
        ).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> "Account":
        doc = json.loads(data)
        return cls(email=doc["Email"], uri=doc["URI"], key=base64.b64decode(doc["Key"]))


@dataclass
class Certificate:
    """Certificate issued for a registrable domain and its alternative names."""

    domain: str
    alternative_names: set[str] = field(default_factory=set)
    expires: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    certificate_chain: bytes = b""
    private_key: bytes = b""
    thumbprint: str = ""

    def __post_init__(self):
        self.alternative_names = set(self.alternative_names) - {self.domain}

    def all_names(self) -> list[str]:
        """The primary domain followed by the alternative names, sorted."""
        return [self.domain, *sorted(self.alternative_names)]

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "Domain": self.domain,
                "AlternativeNames": sorted(self.alternative_names),
                "Expires": self.expires.isoformat(),
                "CertificateChain": base64.b64encode(self.certificate_chain).decode("ascii"),
                "PrivateKey": base64.b64encode(self.private_key).decode("ascii"),
                "Thumbprint": self.thumbprint,
            }
        ).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> "Certificate":
        doc = json.loads(data)
        expires = datetime.fromisoformat(doc["Expires"])
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return cls(
            domain=doc["Domain"],
            alternative_names=set(doc.get("AlternativeNames") or []),
            expires=expires,
            certificate_chain=base64.b64decode(doc.get("CertificateChain", "")),
            private_key=base64.b64decode(doc.get("PrivateKey", "")),
            thumbprint=doc.get("Thumbprint", ""),
        )

    def __repr__(self) -> str:
        return f"<Certificate {self.domain} sans={sorted(self.alternative_names)} expires={self.expires.isoformat()}>"


@dataclass
class Challenge:
    """HTTP-01 token and the response the validating authority expects."""

    key: str
    value: str


class Store(Protocol):
    def get_account(self, email: str) -> Account | None: ...

    def put_account(self, account: Account) -> None: ...

    def get_certificate(self, domain: str) -> Certificate | None: ...

    def get_certificates(self) -> list[Certificate]: ...

    def put_certificate(self, cert: Certificate) -> None: ...

    def get_challenge(self, key: str) -> Challenge | None: ...

    def put_challenge(self, challenge: Challenge) -> None: ...

    def delete_challenge(self, key: str) -> None: ...


class Backend(Protocol):
    """Raw key/value storage used by ``KeyValueStore``."""

    def get(self, key: str) -> bytes | None: ...

    def put(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...

    def list(self, prefix: str) -> list[bytes]: ...


class MemoryBackend:
    """In-process backend; contents are lost when the process exits."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)

    def list(self, prefix: str) -> list[bytes]:
        prefix = prefix.rstrip("/") + "/"
        with self._lock:
            return [
                value
                for key, value in sorted(self._data.items())
                if key.startswith(prefix) and "/" not in key[len(prefix) :]
            ]


class FileBackend:
    """Stores each key as a file below ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise ValueError(f"Invalid key: {key!r}")
        return self.root.joinpath(*parts)

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def put(self, key: str, value: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(value)
            os.replace(tmp, path)
        except BaseException:
            os.unlink(tmp)
            raise

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def list(self, prefix: str) -> list[bytes]:
        directory = self._path(prefix)
        if not directory.is_dir():
            return []
        return [
            p.read_bytes()
            for p in sorted(directory.iterdir())
            if p.is_file() and not p.name.startswith(".tmp-")
        ]


class KeyValueStore:
    """``Store`` implementation on top of a ``Backend``."""

    def __init__(
        self,
        backend: Backend,
        prefix: str = DEFAULT_PREFIX,
        logger: logging.Logger | None = None,
    ) -> None:
        self.backend = backend
        self.prefix = prefix.strip("/")
        self.logger = logger or logging.getLogger(__name__)

    def _path(self, *components: str) -> str:
        return posixpath.join(*[c for c in (self.prefix, *components) if c])

    def _get(self, key: str) -> bytes | None:
        try:
            return self.backend.get(key)
        except Exception as e:
            raise StorageError(key, str(e)) from e

    def _put(self, key: str, value: bytes) -> None:
        try:
            self.backend.put(key, value)
        except Exception as e:
            raise StorageError(key, str(e)) from e

    def get_account(self, email: str) -> Account | None:
        key = self._path(ACCOUNTS_PATH, email)
        data = self._get(key)
        if data is None:
            return None
        try:
            return Account.from_json(data)
        except (ValueError, KeyError) as e:
            raise StorageError(key, f"invalid account record: {e}") from e

    def put_account(self, account: Account) -> None:
        if not account.email:
            raise ValidationError("account", "email")
        if not account.uri:
            raise ValidationError("account", "URI")
        if not account.key:
            raise ValidationError("account", "key")

        self._put(self._path(ACCOUNTS_PATH, account.email), account.to_json())

    def get_certificate(self, domain: str) -> Certificate | None:
        key = self._path(CERTIFICATES_PATH, domain)
        data = self._get(key)
        if data is None:
            return None
        try:
            return Certificate.from_json(data)
        except (ValueError, KeyError) as e:
            raise StorageError(key, f"invalid certificate record: {e}") from e

    def get_certificates(self) -> list[Certificate]:
        key = self._path(CERTIFICATES_PATH)
        try:
            values = self.backend.list(key)
        except Exception as e:
            raise StorageError(key, str(e)) from e

        try:
            return [Certificate.from_json(value) for value in values]
        except (ValueError, KeyError) as e:
            raise StorageError(key, f"invalid certificate record: {e}") from e

    def put_certificate(self, cert: Certificate) -> None:
        if not cert.domain:
            raise ValidationError("certificate", "domain")

        self._put(self._path(CERTIFICATES_PATH, cert.domain), cert.to_json())

    def get_challenge(self, key: str) -> Challenge | None:
        data = self._get(self._path(CHALLENGES_PATH, key))
        if data is None:
            return None
        return Challenge(key=key, value=data.decode("utf-8"))

    def put_challenge(self, challenge: Challenge) -> None:
        self.logger.debug(f"Saving challenge in store: {challenge.key}")

        if not challenge.key:
            raise ValidationError("challenge", "key")
        if not challenge.value:
            raise ValidationError("challenge", "value")

        self._put(self._path(CHALLENGES_PATH, challenge.key), challenge.value.encode("utf-8"))

    def delete_challenge(self, key: str) -> None:
        self.logger.debug(f"Removing challenge from store: {key}")

        if not key:
            raise ValidationError("challenge", "key")

        path = self._path(CHALLENGES_PATH, key)
        try:
            self.backend.delete(path)
        except Exception as e:
            raise StorageError(path, str(e)) from e
