"""Tests for certificate and key helpers."""

import hashlib
from datetime import datetime, timedelta, timezone

import pytest
from conftest import make_certificate
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtensionOID, NameOID

from acme_certsync import certificate, utils


class TestGeneratePrivateKey:
    """Tests for generate_private_key function."""

    def test_generates_rsa_key(self):
        """Test that an RSA key of the default size is generated."""
        key = certificate.generate_private_key()

        assert isinstance(key, rsa.RSAPrivateKey)
        assert key.key_size == certificate.DEFAULT_KEY_SIZE
        assert key.public_key().public_numbers().e == 65537


class TestGenerateCSR:
    """Tests for generate_csr function."""

    def sans(self, csr):
        san_ext = csr.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        return san_ext.value.get_values_for_type(x509.DNSName)

    def test_csr_has_correct_cn(self, account_key):
        """Test that CSR has the primary domain as Common Name."""
        csr = certificate.generate_csr("example.com", account_key)

        cn = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        assert cn == "example.com"
        assert self.sans(csr) == ["example.com"]

    def test_csr_with_additional_domains(self, account_key):
        """Test CSR lists the primary domain first, then the alternative names."""
        csr = certificate.generate_csr("example.com", account_key, ["www.example.com", "api.example.com"])

        assert self.sans(csr) == ["example.com", "www.example.com", "api.example.com"]
        assert csr.is_signature_valid

    def test_csr_avoids_duplicate_domains(self, account_key):
        """Test that duplicate domains are not added to SAN."""
        csr = certificate.generate_csr("example.com", account_key, ["example.com", "www.example.com"])

        assert self.sans(csr) == ["example.com", "www.example.com"]


class TestParseCertificateChain:
    """Tests for parse_certificate_chain function."""

    def test_parses_chain_leaf_first(self, account_key):
        leaf = make_certificate(account_key, "example.com")
        issuer = make_certificate(account_key, "Test CA")

        chain = certificate.parse_certificate_chain(leaf + issuer)

        assert len(chain) == 2
        assert chain[0].subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "example.com"

    def test_accepts_text(self, account_key):
        pem = make_certificate(account_key, "example.com").decode()

        assert len(certificate.parse_certificate_chain(pem)) == 1

    def test_skips_private_key_blocks(self, account_key):
        bundle = utils.private_key_to_pem(account_key) + make_certificate(account_key, "example.com")

        assert len(certificate.parse_certificate_chain(bundle)) == 1

    def test_empty_input(self):
        assert certificate.parse_certificate_chain("") == []

    def test_invalid_block(self):
        pem = "-----BEGIN CERTIFICATE-----\nMIIC\n-----END CERTIFICATE-----"

        with pytest.raises(ValueError, match="Failed to parse certificate 1"):
            certificate.parse_certificate_chain(pem)


class TestThumbprintAndExpiry:
    """Tests for thumbprint and expires functions."""

    def test_thumbprint_is_sha256_of_der(self, account_key):
        cert = certificate.parse_certificate_chain(make_certificate(account_key, "example.com"))[0]
        der = cert.public_bytes(serialization.Encoding.DER)

        assert certificate.thumbprint(cert) == hashlib.sha256(der).hexdigest()
        assert certificate.thumbprint(der) == certificate.thumbprint(cert)

    def test_different_certificates_differ(self, account_key):
        a = certificate.parse_certificate_chain(make_certificate(account_key, "example.com"))[0]
        b = certificate.parse_certificate_chain(make_certificate(account_key, "example.com"))[0]

        assert certificate.thumbprint(a) != certificate.thumbprint(b)

    def test_expires_is_utc(self, account_key):
        not_after = datetime(2031, 6, 1, 12, 0, tzinfo=timezone.utc)
        pem = make_certificate(account_key, "example.com", not_after=not_after)

        expires = certificate.expires(certificate.parse_certificate_chain(pem)[0])

        assert expires == not_after
        assert expires.utcoffset() == timedelta(0)

    def test_certificate_to_pem(self, account_key):
        pem = make_certificate(account_key, "example.com")
        cert = certificate.parse_certificate_chain(pem)[0]

        assert certificate.certificate_to_pem(cert) == pem
