"""Shared fixtures for CA tests.

Keys are kept small (RSA 2048, P-256) so the suite stays fast; production
defaults are 4096-bit RSA.
"""

from collections.abc import Callable

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from tinyca.ca.issuer import CertificateIssuer
from tinyca.ca.store import CAStore, RootAuthority

TEST_KEY_SIZE = 2048


@pytest.fixture(scope="session")
def root_authority(tmp_path_factory) -> RootAuthority:
    """A root authority bootstrapped in a throwaway store."""
    store = CAStore(tmp_path_factory.mktemp("caroot"), key_size=TEST_KEY_SIZE)
    return store.open()


@pytest.fixture
def issuer(root_authority) -> CertificateIssuer:
    return CertificateIssuer(root_authority, key_size=TEST_KEY_SIZE)


@pytest.fixture(scope="session")
def csr_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def make_csr(csr_key) -> Callable[..., x509.CertificateSigningRequest]:
    """Factory building signed CSRs with an optional SAN and extra extensions."""

    def _make_csr(
        common_name: str | None = "example.test",
        dns_names: list[str] | None = None,
        extensions: list[tuple[x509.ExtensionType, bool]] | None = None,
    ) -> x509.CertificateSigningRequest:
        attributes = []
        if common_name is not None:
            attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Org"))

        builder = x509.CertificateSigningRequestBuilder().subject_name(x509.Name(attributes))
        if dns_names is not None:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(n) for n in dns_names]),
                critical=False,
            )
        for value, critical in extensions or []:
            builder = builder.add_extension(value, critical=critical)
        return builder.sign(csr_key, hashes.SHA256())

    return _make_csr
