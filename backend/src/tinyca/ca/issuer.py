"""Leaf certificate issuance.

Issues end-entity certificates signed by the root authority, either for a
list of hostnames and IP addresses (a key pair is generated for the caller)
or for a PKCS#10 certificate signing request (the caller keeps its key).
"""

import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from ipaddress import IPv4Address, IPv6Address

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import CertificatePublicKeyTypes
from cryptography.x509.oid import ExtendedKeyUsageOID, ExtensionOID, NameOID
from opentelemetry import trace

from tinyca.ca.crypto import (
    add_years,
    compute_thumbprint,
    encode_certificate,
    encode_private_key,
    generate_private_key,
    random_serial_number,
    signature_hash,
)
from tinyca.ca.errors import (
    CAError,
    InvalidHostnameError,
    InvalidRequestError,
    InvalidSignatureError,
    SigningError,
)
from tinyca.ca.store import RootAuthority
from tinyca.metrics import ca_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

HOSTNAME_PATTERN = "^[A-Za-z0-9.*-]+$"
_HOSTNAME_RE = re.compile(r"[A-Za-z0-9.*-]+")

# Extensions the leaf profile sets itself; a CSR cannot request them
_PROFILE_EXTENSIONS = frozenset(
    {
        ExtensionOID.BASIC_CONSTRAINTS,
        ExtensionOID.KEY_USAGE,
        ExtensionOID.EXTENDED_KEY_USAGE,
        ExtensionOID.AUTHORITY_KEY_IDENTIFIER,
    }
)


@dataclass
class LeafCertificate:
    """Result of certificate issuance."""

    certificate_pem: str
    private_key_pem: str | None
    serial_number: int
    thumbprint: str
    not_before: datetime
    not_after: datetime

    def to_pem(self) -> str:
        """Certificate block followed by the private key block, when there is one."""
        if self.private_key_pem is None:
            return self.certificate_pem
        return self.certificate_pem + self.private_key_pem

    def __str__(self) -> str:
        return self.to_pem()


def validate_hostname(hostname: str) -> None:
    """Check a hostname against the accepted character set.

    Raises:
        InvalidHostnameError: If the hostname contains anything besides ASCII
            letters, digits, dots, asterisks and hyphens.
    """
    if not isinstance(hostname, str) or _HOSTNAME_RE.fullmatch(hostname) is None:
        raise InvalidHostnameError(str(hostname), HOSTNAME_PATTERN)


class CertificateIssuer:
    """Issues leaf certificates signed by the root authority.

    Certificate attributes:
    - Issuer: the root certificate subject
    - Validity: now() to now() + 10 years
    - Basic Constraints: CA=false
    - Key Usage: Digital Signature, Key Encipherment
    - Extended Key Usage: Client Authentication, Server Authentication
    - Serial: 128-bit random
    """

    # Configuration
    VALIDITY_YEARS = 10
    LEAF_KEY_SIZE = 4096
    LEAF_ORGANIZATION = "Tiny CA development certificate"

    def __init__(self, root: RootAuthority, key_size: int = LEAF_KEY_SIZE) -> None:
        """Initialize issuer with the root authority.

        Args:
            root: The CA's private key and certificate for signing.
            key_size: RSA key size for keys generated on behalf of callers.
        """
        self._root = root
        self.key_size = key_size

    @property
    def root(self) -> RootAuthority:
        return self._root

    def issue_from_attributes(
        self,
        hostnames: Sequence[str],
        addresses: Sequence[IPv4Address | IPv6Address] = (),
    ) -> LeafCertificate:
        """Issue a certificate and a fresh private key for hostnames and IPs.

        Args:
            hostnames: DNS names for the Subject Alternative Name, in order.
            addresses: IP addresses for the Subject Alternative Name, in order.

        Returns:
            LeafCertificate carrying both the certificate and its private key.

        Raises:
            InvalidHostnameError: If a hostname is outside the accepted grammar.
            KeyGenerationError: If the leaf key cannot be generated.
            SigningError: If the root key fails to sign.
            EncodingError: If the result cannot be serialized.
        """
        with tracer.start_as_current_span("CertificateIssuer.issue_from_attributes") as span:
            span.set_attribute("hostnames", list(hostnames))
            span.set_attribute("addresses", [str(a) for a in addresses])

            start_time = time.time()
            try:
                for hostname in hostnames:
                    validate_hostname(hostname)

                leaf_key = generate_private_key(self.key_size)

                subject = x509.Name(
                    [
                        x509.NameAttribute(NameOID.ORGANIZATION_NAME, self.LEAF_ORGANIZATION),
                    ]
                )
                builder = self._leaf_builder(subject, leaf_key.public_key())

                names: list[x509.GeneralName] = [x509.DNSName(h) for h in hostnames]
                names.extend(x509.IPAddress(a) for a in addresses)
                if names:
                    builder = builder.add_extension(
                        x509.SubjectAlternativeName(names),
                        critical=False,
                    )

                certificate = self._sign(builder)
                key_pem = encode_private_key(leaf_key).decode("utf-8")
                return self._finish(certificate, key_pem, "attributes", start_time, span)
            except CAError as e:
                self._record_failure("attributes", e)
                raise

    def issue_from_csr(self, csr: x509.CertificateSigningRequest) -> LeafCertificate:
        """Issue a certificate for a certificate signing request.

        The CSR subject and requested extensions are carried over. When the
        CSR requests no Subject Alternative Name, the subject Common Name is
        used as the only DNS name.

        Args:
            csr: A parsed certificate signing request.

        Returns:
            LeafCertificate carrying the certificate only.

        Raises:
            InvalidSignatureError: If the CSR self-signature does not verify.
            InvalidRequestError: If the Common Name cannot be used as a DNS name.
            SigningError: If the root key fails to sign.
            EncodingError: If the result cannot be serialized.
        """
        with tracer.start_as_current_span("CertificateIssuer.issue_from_csr") as span:
            start_time = time.time()
            try:
                self._check_signature(csr)
                span.set_attribute("subject", csr.subject.rfc4514_string())

                try:
                    public_key = csr.public_key()
                    extensions = list(csr.extensions)
                    builder = self._leaf_builder(csr.subject, public_key)
                except (
                    TypeError,
                    ValueError,
                    x509.DuplicateExtension,
                    x509.UnsupportedGeneralNameType,
                ) as e:
                    raise InvalidRequestError(f"unsupported certificate request: {e}") from e

                requested_san = False
                for extension in extensions:
                    if extension.oid in _PROFILE_EXTENSIONS:
                        logger.warning(
                            "csr_extension_ignored",
                            extra={"oid": extension.oid.dotted_string},
                        )
                        continue
                    if extension.oid == ExtensionOID.SUBJECT_ALTERNATIVE_NAME:
                        requested_san = True
                    builder = builder.add_extension(extension.value, critical=extension.critical)

                if not requested_san:
                    builder = self._add_common_name_san(builder, csr.subject)

                certificate = self._sign(builder)
                return self._finish(certificate, None, "csr", start_time, span)
            except CAError as e:
                self._record_failure("csr", e)
                raise

    def _check_signature(self, csr: x509.CertificateSigningRequest) -> None:
        try:
            valid = csr.is_signature_valid
        except Exception as e:
            raise InvalidSignatureError(f"failed to verify the CSR signature: {e}") from e
        if not valid:
            raise InvalidSignatureError("the CSR signature does not match its public key")

    def _add_common_name_san(
        self, builder: x509.CertificateBuilder, subject: x509.Name
    ) -> x509.CertificateBuilder:
        """Use the subject Common Name as SAN for clients that only set a CN."""
        common_names = subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        if not common_names:
            return builder

        common_name = common_names[0].value
        try:
            san = x509.SubjectAlternativeName([x509.DNSName(str(common_name))])
        except ValueError as e:
            raise InvalidRequestError(
                f"the CSR Common Name [{common_name}] is not a usable DNS name: {e}"
            ) from e
        return builder.add_extension(san, critical=False)

    def _leaf_builder(
        self, subject: x509.Name, public_key: CertificatePublicKeyTypes
    ) -> x509.CertificateBuilder:
        """Certificate template with the leaf profile applied."""
        now = datetime.now(timezone.utc)
        return (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(self._root.certificate.subject)
            .public_key(public_key)
            .serial_number(random_serial_number())
            .not_valid_before(now)
            .not_valid_after(add_years(now, self.VALIDITY_YEARS))
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None),
                critical=True,
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    key_encipherment=True,
                    key_cert_sign=False,
                    crl_sign=False,
                    content_commitment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage(
                    [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]
                ),
                critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(
                    self._root.private_key.public_key()
                ),
                critical=False,
            )
        )

    def _sign(self, builder: x509.CertificateBuilder) -> x509.Certificate:
        """Sign with the CA key."""
        key = self._root.private_key
        try:
            return builder.sign(key, signature_hash(key))
        except Exception as e:
            raise SigningError(f"Failed to sign certificate: {e}") from e

    def _finish(
        self,
        certificate: x509.Certificate,
        private_key_pem: str | None,
        source: str,
        start_time: float,
        span: trace.Span,
    ) -> LeafCertificate:
        cert_pem = encode_certificate(certificate).decode("utf-8")
        serial_str = format(certificate.serial_number, "032x")
        span.set_attribute("serial", serial_str)

        issuance_time = time.time() - start_time
        ca_metrics.record_certificate_issued(source, issuance_time)

        logger.info(
            "certificate_issued",
            extra={
                "source": source,
                "serial": serial_str,
                "not_after": certificate.not_valid_after_utc.isoformat(),
                "duration_seconds": issuance_time,
            },
        )

        return LeafCertificate(
            certificate_pem=cert_pem,
            private_key_pem=private_key_pem,
            serial_number=certificate.serial_number,
            thumbprint=compute_thumbprint(certificate),
            not_before=certificate.not_valid_before_utc,
            not_after=certificate.not_valid_after_utc,
        )

    def _record_failure(self, source: str, error: CAError) -> None:
        ca_metrics.record_issuance_failed(source, error.code)
        logger.error(
            "certificate_issuance_failed",
            extra={"source": source, "reason": error.code, "error": str(error)},
        )
