"""Cryptographic utilities for certificate operations.

Provides serial numbers, key generation, PEM container handling and
thumbprint computation.
"""

import logging
import re
import secrets
from datetime import datetime

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes

from tinyca.ca.errors import EncodingError, InvalidRequestError, KeyGenerationError

logger = logging.getLogger(__name__)

# PEM block labels
PRIVATE_KEY_LABEL = "PRIVATE KEY"
CERTIFICATE_LABEL = "CERTIFICATE"
CERTIFICATE_REQUEST_LABEL = "CERTIFICATE REQUEST"

SERIAL_NUMBER_BITS = 128

# Keys able to sign certificates and derive their public key
SIGNING_KEY_TYPES = (
    rsa.RSAPrivateKey,
    ec.EllipticCurvePrivateKey,
    dsa.DSAPrivateKey,
    ed25519.Ed25519PrivateKey,
    ed448.Ed448PrivateKey,
)

_PEM_BEGIN = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----")


def random_serial_number() -> int:
    """Draw a random certificate serial number below 2**128.

    X.509 serial numbers must be positive, so zero is redrawn.
    """
    serial = 0
    while serial == 0:
        serial = secrets.randbits(SERIAL_NUMBER_BITS)
    return serial


def generate_private_key(key_size: int) -> rsa.RSAPrivateKey:
    """Generate an RSA private key.

    Raises:
        KeyGenerationError: If the key cannot be generated.
    """
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    except Exception as e:
        raise KeyGenerationError(f"Failed to generate a {key_size}-bit RSA key: {e}") from e


def signature_hash(key: CertificateIssuerPrivateKeyTypes) -> hashes.HashAlgorithm | None:
    """Digest to sign certificates with; EdDSA keys take none."""
    if isinstance(key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return None
    return hashes.SHA256()


def add_years(moment: datetime, years: int) -> datetime:
    """Shift a timestamp by calendar years, clamping Feb 29 to Feb 28."""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


def pem_label(data: bytes) -> str | None:
    """Return the label of the first PEM block in data, if any."""
    match = _PEM_BEGIN.search(data)
    if match is None:
        return None
    return match.group(1).decode("ascii")


def encode_private_key(key: CertificateIssuerPrivateKeyTypes) -> bytes:
    """Encode a private key as an unencrypted PKCS#8 PEM block.

    Raises:
        EncodingError: If serialization fails.
    """
    try:
        return key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    except Exception as e:
        raise EncodingError(f"Failed to encode private key: {e}") from e


def encode_certificate(certificate: x509.Certificate) -> bytes:
    """Encode a certificate as a PEM block.

    Raises:
        EncodingError: If serialization fails.
    """
    try:
        return certificate.public_bytes(serialization.Encoding.PEM)
    except Exception as e:
        raise EncodingError(f"Failed to encode certificate: {e}") from e


def load_csr_pem(data: bytes) -> x509.CertificateSigningRequest:
    """Parse a PEM encoded PKCS#10 certificate signing request.

    The signature is not checked here.

    Raises:
        InvalidRequestError: If data is not a CERTIFICATE REQUEST block.
    """
    if pem_label(data) != CERTIFICATE_REQUEST_LABEL:
        raise InvalidRequestError("failed to read the certificate request: unexpected content")

    try:
        return x509.load_pem_x509_csr(data)
    except ValueError as e:
        raise InvalidRequestError(f"failed to parse the certificate request: {e}") from e


def compute_thumbprint(certificate: x509.Certificate) -> str:
    """Compute SHA-256 thumbprint of a certificate.

    Args:
        certificate: A parsed certificate.

    Returns:
        Lowercase hexadecimal SHA-256 thumbprint of the DER encoding.

    Raises:
        EncodingError: If thumbprint computation fails.
    """
    try:
        return certificate.fingerprint(hashes.SHA256()).hex()
    except Exception as e:
        raise EncodingError(f"Failed to compute certificate thumbprint: {e}") from e
