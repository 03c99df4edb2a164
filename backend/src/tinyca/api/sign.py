"""Signing API endpoints."""

import base64
import binascii

from cryptography import x509
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse, Response

from tinyca.api.schemas import SignRequest
from tinyca.ca.crypto import load_csr_pem
from tinyca.ca.errors import CAError, InvalidRequestError, RequestError
from tinyca.ca.issuer import CertificateIssuer

router = APIRouter(tags=["sign"])

# Global issuer instance, set at startup once the root authority is loaded
_issuer: CertificateIssuer | None = None


def set_issuer(issuer: CertificateIssuer) -> None:
    """Set the global issuer instance."""
    global _issuer
    _issuer = issuer


def get_issuer() -> CertificateIssuer:
    """Get the global issuer instance."""
    if _issuer is None:
        raise RuntimeError("CertificateIssuer not initialized")
    return _issuer


def _to_http_error(error: CAError) -> HTTPException:
    """Rejected requests are the caller's fault; anything else is ours."""
    if isinstance(error, RequestError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


def decode_csr_body(body: bytes) -> x509.CertificateSigningRequest:
    """Decode a base64 encoded PEM certificate signing request.

    Line breaks and other whitespace in the base64 text are ignored.

    Raises:
        InvalidRequestError: If the body is not base64 or not a CSR.
    """
    try:
        csr_pem = base64.b64decode(b"".join(body.split()), validate=True)
    except binascii.Error as e:
        raise InvalidRequestError(f"failed to decode the request body as base64: {e}") from e
    return load_csr_pem(csr_pem)


@router.post("/sign", response_class=PlainTextResponse)
async def sign(body: SignRequest) -> PlainTextResponse:
    """
    Issue a certificate and private key for hostnames and IP addresses.

    - Body: {"dnsNames": [...], "IPs": [...]}
    - Returns: certificate PEM followed by private key PEM
    - Errors: 400 BAD_REQUEST (hostname format), 500 (key generation/signing)
    """
    issuer = get_issuer()
    try:
        leaf = await run_in_threadpool(
            issuer.issue_from_attributes, body.hostnames, body.addresses
        )
    except CAError as e:
        raise _to_http_error(e) from None
    return PlainTextResponse(leaf.to_pem())


@router.post("/signCSR", response_class=PlainTextResponse)
async def sign_csr(request: Request) -> PlainTextResponse:
    """
    Issue a certificate for a certificate signing request.

    - Body: base64 of the PEM encoded CSR
    - Returns: certificate PEM
    - Errors: 400 BAD_REQUEST (undecodable CSR, bad signature), 500 (signing)
    """
    issuer = get_issuer()
    try:
        csr = decode_csr_body(await request.body())
        leaf = await run_in_threadpool(issuer.issue_from_csr, csr)
    except CAError as e:
        raise _to_http_error(e) from None
    return PlainTextResponse(leaf.to_pem())


@router.get("/ca.pem")
async def ca_certificate() -> Response:
    """Root certificate to install in trust stores."""
    return Response(
        content=get_issuer().root.certificate_pem,
        media_type="application/x-pem-file",
    )
