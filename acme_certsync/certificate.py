"""
Certificate and key helpers.
"""

import hashlib
import logging
from datetime import datetime

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

logger = logging.getLogger(__name__)

PUBLIC_EXPONENT = 65537
DEFAULT_KEY_SIZE = 2048

PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
PEM_END = "-----END CERTIFICATE-----"


def generate_private_key(
    key_size: int = DEFAULT_KEY_SIZE, public_exponent: int = PUBLIC_EXPONENT
) -> rsa.RSAPrivateKey:
    """
    Generate an RSA private key.

    Args:
        key_size: Size of the key in bits.
        public_exponent: Public exponent value.

    Returns:
        rsa.RSAPrivateKey: Generated RSA private key.
    """
    logger.debug(f"Generating {key_size}-bit RSA private key")
    return rsa.generate_private_key(public_exponent=public_exponent, key_size=key_size)


def generate_csr(
    domain: str, private_key: rsa.RSAPrivateKey, additional_domains: list[str] | None = None
) -> x509.CertificateSigningRequest:
    """
    Generate a Certificate Signing Request (CSR).

    Args:
        domain: Primary domain name for the certificate (used as CN).
        private_key: RSA private key.
        additional_domains: Additional domains to include in SAN (optional).

    Returns:
        x509.CertificateSigningRequest: Generated CSR.
    """
    san_domains = [domain]
    for additional_domain in additional_domains or []:
        if additional_domain not in san_domains:
            san_domains.append(additional_domain)

    logger.info(f"Creating CSR for domains: {', '.join(san_domains)}")
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in san_domains]), critical=False
        )
        .sign(private_key, hashes.SHA256())
    )


def parse_certificate_chain(certificate: str | bytes) -> list[x509.Certificate]:
    """
    Parse a PEM bundle into certificate objects, leaf first.

    Blocks that are not certificates (e.g. private keys) are skipped.

    Raises:
        ValueError: If a certificate block cannot be parsed.
    """
    if isinstance(certificate, bytes):
        certificate = certificate.decode("ascii", errors="replace")

    certificates = []
    for i, block in enumerate(certificate.split(PEM_BEGIN)[1:], 1):
        cert_pem = PEM_BEGIN + block.split(PEM_END)[0] + PEM_END
        try:
            certificates.append(x509.load_pem_x509_certificate(cert_pem.encode()))
        except ValueError as e:
            raise ValueError(f"Failed to parse certificate {i}: {e}") from e

    return certificates


def certificate_to_pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def thumbprint(cert: x509.Certificate | bytes) -> str:
    """
    Digest of a certificate's raw DER bytes.

    Args:
        cert: Parsed certificate, or its DER encoding.

    Returns:
        str: Lowercase hex SHA-256 digest.
    """
    if isinstance(cert, x509.Certificate):
        cert = cert.public_bytes(serialization.Encoding.DER)
    return hashlib.sha256(cert).hexdigest()


def expires(cert: x509.Certificate) -> datetime:
    """End of the certificate's validity period, timezone-aware UTC."""
    return cert.not_valid_after_utc
