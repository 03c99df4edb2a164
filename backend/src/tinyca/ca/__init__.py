"""Certificate Authority core.

This module provides:
- Root authority storage (loading, bootstrap, on-disk persistence)
- Leaf certificate issuance from hostnames/IPs or from a CSR
- The error taxonomy shared by both
"""

from tinyca.ca.issuer import CertificateIssuer, LeafCertificate
from tinyca.ca.store import CAStore, RootAuthority, get_store, open_root_authority

__all__ = [
    "CAStore",
    "CertificateIssuer",
    "LeafCertificate",
    "RootAuthority",
    "get_store",
    "open_root_authority",
]
