"""Error taxonomy for the certificate authority.

Store errors are fatal for the host process: without a root authority nothing
can be issued. Request errors are scoped to a single issuance and never touch
the loaded root.
"""


class CAError(Exception):
    """Base class for certificate authority failures."""

    code = "CA_ERROR"


class StoreError(CAError):
    """Raised when the root authority cannot be loaded or created."""

    code = "STORE_ERROR"


class StoreInvalidError(StoreError):
    """Raised when the configured store location is not a usable directory."""

    code = "STORE_INVALID"


class StoreCorruptError(StoreError):
    """Raised when the stored key or certificate cannot be decoded."""

    code = "STORE_CORRUPT"


class KeyGenerationError(CAError):
    code = "KEY_GENERATION_FAILED"


class SigningError(CAError):
    code = "SIGNING_FAILED"


class EncodingError(CAError):
    code = "ENCODING_FAILED"


class RequestError(CAError):
    """Raised when an issuance request is rejected before signing."""

    code = "INVALID_REQUEST"


class InvalidRequestError(RequestError):
    """Raised when a signing request cannot be decoded."""

    code = "INVALID_REQUEST"


class InvalidSignatureError(RequestError):
    """Raised when a CSR is not signed by its own embedded public key."""

    code = "INVALID_SIGNATURE"


class InvalidHostnameError(RequestError):
    """Raised when a requested hostname is outside the accepted grammar."""

    code = "INVALID_HOSTNAME"

    def __init__(self, hostname: str, pattern: str) -> None:
        self.hostname = hostname
        self.pattern = pattern
        super().__init__(f"bad format for hostname: [{hostname}] (expected: '{pattern}')")
