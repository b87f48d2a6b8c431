import base64
import hashlib
import json
import logging
import os
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger(__name__)


def rsa_jwk_public(key: rsa.RSAPrivateKey | rsa.RSAPublicKey) -> dict:
    """
    Build the public JSON Web Key for an RSA key.

    Args:
        key: RSA private or public key.

    Returns:
        dict: JWK with the ``kty``, ``n`` and ``e`` members.
    """
    if isinstance(key, rsa.RSAPrivateKey):
        key = key.public_key()

    public_numbers = key.public_numbers()

    return {
        "kty": "RSA",
        "n": b64url_uint(public_numbers.n),
        "e": b64url_uint(public_numbers.e),
    }


def b64url_uint(n: int) -> str:
    """
    Encode an unsigned integer as unpadded base64url, big-endian.

    Raises:
        TypeError: If the input is not an unsigned integer.
    """
    if not isinstance(n, int) or n < 0:
        raise TypeError("Input must be an unsigned integer")

    length = max(1, (n.bit_length() + 7) // 8)
    return b64url(n.to_bytes(length, "big"))


def b64url(data: bytes) -> str:
    """Encode bytes as unpadded base64url text."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def json_encode(data: dict) -> bytes:
    """Encode a dictionary as compact, key-sorted JSON bytes."""
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def json_thumbprint(data: dict) -> str:
    """
    Calculate the RFC 7638 thumbprint of a JWK.

    Returns:
        str: Base64url-encoded SHA-256 digest of the canonical JSON.
    """
    return b64url(hashlib.sha256(json_encode(data)).digest())


def private_key_to_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    """Serialize a private key as unencrypted PKCS#8 PEM."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def private_key_to_der(private_key: rsa.RSAPrivateKey) -> bytes:
    """Serialize a private key as unencrypted PKCS#8 DER."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_private_key_der(data: bytes) -> rsa.RSAPrivateKey:
    """
    Load an RSA private key from DER bytes.

    Raises:
        ValueError: If the data is not an RSA private key.
    """
    key = serialization.load_der_private_key(data, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError(f"Invalid key type: {type(key).__name__}")
    return key


def get_env_secrets(name: str, path: Path = Path(Path.cwd() / "secrets/")) -> str | None:
    """
    Get a secret from an environment variable, or from a file of the same name
    in the secrets directory (Docker secrets).

    Args:
        name (str): Environment variable name.
        path (Path): Path to the secrets directory (default: "secrets/").

    Returns:
        str: The secret value.

    Raises:
        OSError: If neither the environment variable nor the secret file exists.
    """
    secret = os.environ.get(name)

    if not secret and (path / name).exists():
        secret = (path / name).read_text().rstrip("\n")
        logger.debug(f"Loaded secret from file: {path}/{name}")
        return secret
    elif not secret and not (path / name).exists():
        raise OSError(f"Environment variable and/or secret file variable: {path}/{name} not found")
    return secret
