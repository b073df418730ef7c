"""
=============================================================================
CERTIFICATE LOADER
=============================================================================

Reads the PEM key and certificate for the encrypted listener and builds
its server SSLContext.

    load_tls_material("ssl/key.pem", "ssl/cert.pem")
        │
        ├── both files readable, pair valid ──► TLSMaterial(key, cert, context)
        │
        └── missing / unreadable / corrupt /
            key does not match cert         ──► WARNING logged, None

Absence is NOT an error for the service: without material the manager
simply runs the plain listener alone. CertificateLoadFailure never leaves
this module.

No expiry or chain validation happens here; self-signed development
certificates (made with openssl outside this program) are accepted.

=============================================================================
CONTEXT SETTINGS
=============================================================================

    protocol        PROTOCOL_TLS_SERVER
    minimum         TLS 1.2
    ciphers         ECDHE key exchange + AEAD only (TLS 1.2 list below;
                    TLS 1.3 suites are always AEAD)
    compression     off (OP_NO_COMPRESSION)

=============================================================================
"""

import logging
import ssl
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from ..errors import CertificateLoadFailure


logger = logging.getLogger(__name__)


PathLike = Union[str, Path]

MODERN_CIPHERS = ":".join([
    "ECDHE-ECDSA-AES128-GCM-SHA256",
    "ECDHE-RSA-AES128-GCM-SHA256",
    "ECDHE-ECDSA-AES256-GCM-SHA384",
    "ECDHE-RSA-AES256-GCM-SHA384",
    "ECDHE-ECDSA-CHACHA20-POLY1305",
    "ECDHE-RSA-CHACHA20-POLY1305",
])


@dataclass(frozen=True)
class TLSMaterial:
    """Key and certificate PEM text plus the context built from them."""

    key_pem: bytes = field(repr=False)
    cert_pem: bytes
    context: ssl.SSLContext


def build_server_context(cert_file: PathLike, key_file: PathLike) -> ssl.SSLContext:
    """
    Build a hardened server-side SSLContext.

    Raises:
        ssl.SSLError: The PEM data is invalid or key and cert do not match.
                      Also raised for an encrypted key, with no prompt.
        OSError: A file cannot be read.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.set_ciphers(MODERN_CIPHERS)
    context.options |= ssl.OP_NO_COMPRESSION
    context.load_cert_chain(
        certfile=str(cert_file),
        keyfile=str(key_file),
        password=_refuse_passphrase,
    )
    return context


def _refuse_passphrase():
    # OpenSSL asks for a passphrase only when the key is encrypted.
    raise ssl.SSLError("private key is encrypted, an unencrypted key is required")


def _read_pem(path: Path, kind: str) -> bytes:
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        raise CertificateLoadFailure(str(path), f"{kind} file not found")
    except OSError as e:
        raise CertificateLoadFailure(str(path), f"cannot read {kind} file: {e.strerror or e}")

    if b"-----BEGIN" not in data:
        raise CertificateLoadFailure(str(path), f"{kind} file is not PEM encoded")
    return data


def _load(key_path: Path, cert_path: Path) -> TLSMaterial:
    key_pem = _read_pem(key_path, "key")
    cert_pem = _read_pem(cert_path, "certificate")

    try:
        context = build_server_context(cert_path, key_path)
    except ssl.SSLError as e:
        raise CertificateLoadFailure(str(cert_path), f"invalid key/certificate pair: {e}")
    except OSError as e:
        raise CertificateLoadFailure(str(cert_path), f"cannot load certificate chain: {e}")

    return TLSMaterial(key_pem=key_pem, cert_pem=cert_pem, context=context)


def load_tls_material(key_path: PathLike, cert_path: PathLike) -> Optional[TLSMaterial]:
    """
    Load the encrypted listener's key and certificate.

    Args:
        key_path: PEM private key (unencrypted).
        cert_path: PEM certificate.

    Returns:
        TLSMaterial, or None when anything about the files is wrong.
    """
    try:
        material = _load(Path(key_path), Path(cert_path))
    except CertificateLoadFailure as e:
        logger.warning(f"HTTPS disabled, certificate not loaded: {e}")
        return None

    logger.info(f"Loaded TLS certificate from {cert_path}")
    return material
