"""Tests for CA invariant enforcement.

These tests verify serial number uniqueness and chain correctness across
many issuances, and that concurrent issuance shares the root safely.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from tinyca.ca.crypto import SERIAL_NUMBER_BITS, random_serial_number
from tinyca.ca.issuer import CertificateIssuer
from tinyca.ca.store import RootAuthority

ISSUANCES = 10_000


@pytest.fixture(scope="module")
def fast_root() -> RootAuthority:
    """A P-256 root so that thousands of signatures stay cheap."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Invariant Root")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .sign(key, hashes.SHA256())
    )
    return RootAuthority(private_key=key, certificate=cert, storage_type="generated")


class TestSerialNumbers:
    """Serial numbers are random, positive and within 128 bits."""

    def test_random_serial_numbers_are_distinct(self):
        serials = [random_serial_number() for _ in range(ISSUANCES)]

        assert len(set(serials)) == ISSUANCES
        assert all(0 < s < 2**SERIAL_NUMBER_BITS for s in serials)

    def test_zero_is_redrawn(self, monkeypatch):
        draws = iter([0, 0, 42])
        monkeypatch.setattr("tinyca.ca.crypto.secrets.randbits", lambda bits: next(draws))

        assert random_serial_number() == 42

    def test_issued_serials_are_distinct(self, fast_root, make_csr):
        """Test that 10,000 sequential issuances never repeat a serial."""
        issuer = CertificateIssuer(fast_root)
        csr = make_csr()

        serials = {issuer.issue_from_csr(csr).serial_number for _ in range(ISSUANCES)}

        assert len(serials) == ISSUANCES
        assert max(serials) < 2**128


class TestChain:
    """Issued certificates chain back to the root that signed them."""

    def test_every_leaf_verifies_against_root(self, fast_root, make_csr):
        issuer = CertificateIssuer(fast_root)

        for name in ("a.test", "b.test", "c.test"):
            leaf = issuer.issue_from_csr(make_csr(common_name=name))
            cert = x509.load_pem_x509_certificate(leaf.certificate_pem.encode())
            cert.verify_directly_issued_by(fast_root.certificate)

    def test_authority_key_identifier_matches_root(self, fast_root, make_csr):
        issuer = CertificateIssuer(fast_root)

        leaf = issuer.issue_from_csr(make_csr())
        cert = x509.load_pem_x509_certificate(leaf.certificate_pem.encode())

        aki = cert.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier).value
        expected = x509.AuthorityKeyIdentifier.from_issuer_public_key(
            fast_root.private_key.public_key()
        )
        assert aki.key_identifier == expected.key_identifier


class TestConcurrentIssuance:
    """Issuance calls share only read access to the root."""

    def test_parallel_issuance(self, fast_root, make_csr):
        issuer = CertificateIssuer(fast_root)
        csrs = [make_csr(common_name=f"host{i}.test") for i in range(32)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            leaves = list(pool.map(issuer.issue_from_csr, csrs))

        assert len({leaf.serial_number for leaf in leaves}) == len(csrs)
        for i, leaf in enumerate(leaves):
            cert = x509.load_pem_x509_certificate(leaf.certificate_pem.encode())
            cert.verify_directly_issued_by(fast_root.certificate)
            cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0]
            assert cn.value == f"host{i}.test"
