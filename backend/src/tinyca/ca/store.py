"""Root authority storage: loading and bootstrapping the CA key and certificate.

The store lives in a directory holding two PEM files:
- the root private key (PKCS#8, unencrypted, "PRIVATE KEY" block)
- the self-signed root certificate ("CERTIFICATE" block)

A new root is generated on first use when either file is missing, and reused
for the lifetime of the directory afterwards.
"""

import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes
from cryptography.x509.oid import NameOID
from opentelemetry import trace

from tinyca.ca.crypto import (
    CERTIFICATE_LABEL,
    PRIVATE_KEY_LABEL,
    SIGNING_KEY_TYPES,
    add_years,
    encode_certificate,
    encode_private_key,
    generate_private_key,
    pem_label,
    random_serial_number,
    signature_hash,
)
from tinyca.ca.errors import SigningError, StoreCorruptError, StoreError, StoreInvalidError
from tinyca.metrics import ca_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class RootAuthority:
    """Holds the CA private key and self-signed certificate."""

    private_key: CertificateIssuerPrivateKeyTypes
    certificate: x509.Certificate
    storage_type: str  # "file" or "generated"

    @property
    def certificate_pem(self) -> str:
        """Get CA certificate as PEM string."""
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("utf-8")


class CAStore:
    """Owns the root authority of one store directory.

    The first call to open() loads the key and certificate, creating them if
    needed; every later call returns the same RootAuthority instance.
    """

    # Defaults
    DEFAULT_KEY_NAME = "CAKey.pem"
    DEFAULT_CERT_NAME = "CACrt.pem"
    DEFAULT_CA_VALIDITY_YEARS = 10
    RSA_KEY_SIZE = 4096
    CA_COMMON_NAME = "Tiny CA"

    DIR_MODE = 0o700
    FILE_MODE = 0o600

    def __init__(
        self,
        store_dir: str | os.PathLike[str] | None = None,
        key_name: str = DEFAULT_KEY_NAME,
        cert_name: str = DEFAULT_CERT_NAME,
        key_size: int = RSA_KEY_SIZE,
    ) -> None:
        self._store_dir = Path(store_dir) if store_dir else None
        self.key_name = key_name
        self.cert_name = cert_name
        self.key_size = key_size
        self._root: RootAuthority | None = None
        self._lock = threading.Lock()

    @staticmethod
    def default_store_dir() -> Path:
        return Path.home() / ".local" / "share" / "tinyca"

    @property
    def store_dir(self) -> Path:
        return self._store_dir or self.default_store_dir()

    @property
    def key_path(self) -> Path:
        return self.store_dir / self.key_name

    @property
    def cert_path(self) -> Path:
        return self.store_dir / self.cert_name

    @property
    def root(self) -> RootAuthority:
        """Get loaded root authority. Raises if not loaded."""
        if self._root is None:
            raise StoreError("Root authority not loaded. Call open() first.")
        return self._root

    def open(self) -> RootAuthority:
        """Load the root authority, creating it on first use.

        Returns:
            The cached RootAuthority for this store.

        Raises:
            StoreInvalidError: If the store location is not a usable directory.
            StoreCorruptError: If the stored files cannot be decoded.
            StoreError: If the files cannot be read or written.
            KeyGenerationError, SigningError, EncodingError: If bootstrap fails.
        """
        if self._root is not None:
            return self._root

        with self._lock:
            if self._root is not None:
                return self._root

            with tracer.start_as_current_span("CAStore.open") as span:
                logger.info("ca_store_check", extra={"store_dir": str(self.store_dir)})
                self._prepare_store_dir()

                if self.key_path.exists() and self.cert_path.exists():
                    root = self._load_from_file()
                else:
                    root = self._generate_new()
                    self._save_to_file(root)

                span.set_attribute("storage_type", root.storage_type)
                span.set_attribute(
                    "ca_cert_expires", root.certificate.not_valid_after_utc.isoformat()
                )
                self._root = root
                self._log_loaded(root)
                return root

    def _prepare_store_dir(self) -> None:
        """Ensure the store directory exists, creating the default one if needed."""
        store_dir = self.store_dir

        if store_dir.resolve() == self.default_store_dir().resolve() and not store_dir.exists():
            try:
                store_dir.mkdir(mode=self.DIR_MODE, parents=True)
            except OSError as e:
                raise StoreInvalidError(
                    f"failed to create the CA root directory {store_dir}: {e}"
                ) from e
            logger.info("ca_store_created", extra={"store_dir": str(store_dir)})

        if not store_dir.exists():
            raise StoreInvalidError(f"the root store {store_dir} does not exist")
        if not store_dir.is_dir():
            raise StoreInvalidError(f"the root store {store_dir} must be a directory")

    def _load_from_file(self) -> RootAuthority:
        """Load the CA key and certificate from the store directory."""
        try:
            key_pem = self.key_path.read_bytes()
            cert_pem = self.cert_path.read_bytes()
        except OSError as e:
            raise StoreError(f"Failed to read the CA files: {e}") from e

        if pem_label(key_pem) != PRIVATE_KEY_LABEL:
            raise StoreCorruptError(
                f"failed to read the CA private key {self.key_path}: unexpected content"
            )
        if pem_label(cert_pem) != CERTIFICATE_LABEL:
            raise StoreCorruptError(
                f"failed to read the CA certificate {self.cert_path}: unexpected content"
            )

        try:
            private_key = serialization.load_pem_private_key(key_pem, password=None)
            certificate = x509.load_pem_x509_certificate(cert_pem)
        except Exception as e:
            logger.error(
                "ca_key_load_failed",
                extra={"store_dir": str(self.store_dir), "error": str(e)},
            )
            raise StoreCorruptError(f"Failed to load CA from file: {e}") from e

        if not isinstance(private_key, SIGNING_KEY_TYPES):
            raise StoreCorruptError(
                f"the CA private key {self.key_path} cannot sign certificates"
            )

        return RootAuthority(
            private_key=private_key,
            certificate=certificate,
            storage_type="file",
        )

    def _generate_new(self) -> RootAuthority:
        """Generate a new CA key pair and self-signed certificate."""
        logger.info("Generating new CA key pair", extra={"key_size": self.key_size})

        private_key = generate_private_key(self.key_size)

        now = datetime.now(timezone.utc)
        subject = issuer = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, self.CA_COMMON_NAME),
            ]
        )

        try:
            certificate = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(issuer)
                .public_key(private_key.public_key())
                .serial_number(random_serial_number())
                .not_valid_before(now)
                .not_valid_after(add_years(now, self.DEFAULT_CA_VALIDITY_YEARS))
                .add_extension(
                    x509.BasicConstraints(ca=True, path_length=0),
                    critical=True,
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=False,
                        key_cert_sign=True,
                        crl_sign=False,
                        key_encipherment=False,
                        content_commitment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
                    critical=False,
                )
                .sign(private_key, signature_hash(private_key))
            )
        except Exception as e:
            raise SigningError(f"failed to create the CA root: {e}") from e

        return RootAuthority(
            private_key=private_key,
            certificate=certificate,
            storage_type="generated",
        )

    def _save_to_file(self, root: RootAuthority) -> None:
        """Persist a generated root with owner-only permissions."""
        key_pem = encode_private_key(root.private_key)
        cert_pem = encode_certificate(root.certificate)

        try:
            self._write_atomic(self.key_path, key_pem)
            self._write_atomic(self.cert_path, cert_pem)
        except OSError as e:
            logger.error(
                "ca_key_save_failed",
                extra={"store_dir": str(self.store_dir), "error": str(e)},
            )
            raise StoreError(f"Failed to write the CA files: {e}") from e

        logger.info(
            "CA key pair saved to file",
            extra={"key_path": str(self.key_path), "cert_path": str(self.cert_path)},
        )

    def _write_atomic(self, path: Path, data: bytes) -> None:
        """Write data to path through a temporary file and a rename."""
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, self.FILE_MODE)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _log_loaded(self, root: RootAuthority) -> None:
        """Log successful key loading and record metrics."""
        logger.info(
            "ca_key_loaded",
            extra={
                "storage_type": root.storage_type,
                "algorithm": self._get_algorithm_name(root.private_key),
                "ca_cert_expires": root.certificate.not_valid_after_utc.isoformat(),
                "key_path": str(self.key_path),
                "cert_path": str(self.cert_path),
            },
        )

        ca_metrics.record_ca_key_loaded(root.storage_type)

    def _get_algorithm_name(self, key: CertificateIssuerPrivateKeyTypes) -> str:
        """Get algorithm name from private key."""
        if isinstance(key, rsa.RSAPrivateKey):
            return f"RSA-{key.key_size}"
        elif isinstance(key, ec.EllipticCurvePrivateKey):
            return f"ECDSA-{key.curve.name}"
        return type(key).__name__


# One store per configured location within the process
_stores: dict[tuple[Path, str, str], CAStore] = {}
_stores_lock = threading.Lock()


def get_store(
    store_dir: str | os.PathLike[str] | None = None,
    key_name: str = CAStore.DEFAULT_KEY_NAME,
    cert_name: str = CAStore.DEFAULT_CERT_NAME,
    key_size: int = CAStore.RSA_KEY_SIZE,
) -> CAStore:
    """Return the process-wide store of a location, creating it on first use.

    A location is the resolved store directory plus both file names, so the
    default directory named explicitly and left unset share one store. The
    first caller decides the key size used for bootstrapping.
    """
    location = (Path(store_dir or CAStore.default_store_dir()).resolve(), key_name, cert_name)
    with _stores_lock:
        store = _stores.get(location)
        if store is None:
            store = CAStore(store_dir, key_name=key_name, cert_name=cert_name, key_size=key_size)
            _stores[location] = store
    return store


def open_root_authority(
    store_dir: str | os.PathLike[str] | None = None,
    key_name: str = CAStore.DEFAULT_KEY_NAME,
    cert_name: str = CAStore.DEFAULT_CERT_NAME,
) -> RootAuthority:
    """Open the root authority of a store location.

    Repeated calls with the same location return the same RootAuthority.
    """
    return get_store(store_dir, key_name, cert_name).open()
