"""PEM private key loading, PKCS#8 DER conversion and local signing.

GitHub hands out App private keys as PKCS#1 PEM ("BEGIN RSA PRIVATE KEY"),
while KMS only imports RSA key material as PKCS#8 DER.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from keysmith.errors import KeyFormatError

log = logging.getLogger(__name__)


def load_private_key(pem_file: str | Path) -> rsa.RSAPrivateKey:
    """Read an unencrypted RSA private key (PKCS#1 or PKCS#8 PEM).

    Raises KeyFormatError if the file is missing, empty, or not an RSA key.
    """
    path = Path(pem_file)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise KeyFormatError(f"PEM file not found: {path}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise KeyFormatError(f"Cannot read PEM file {path}: {exc}") from exc

    if not text.strip():
        raise KeyFormatError(f"PEM file is empty: {path}")

    try:
        key = serialization.load_pem_private_key(text.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyFormatError(f"Cannot parse private key in {path}: {exc}") from exc

    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyFormatError(f"Private key in {path} is not an RSA key")
    return key


def convert_pem_to_der(pem_file: str | Path) -> bytes:
    """Return the private key in ``pem_file`` encoded as PKCS#8 DER."""
    key = load_private_key(pem_file)
    der = key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    log.debug("converted %s to PKCS#8 DER (%d bytes)", pem_file, len(der))
    return der


def sign_with_key(key: rsa.RSAPrivateKey, message: bytes) -> bytes:
    """RSASSA-PKCS1-v1_5 / SHA-256 signature, i.e. the JWS RS256 algorithm."""
    return key.sign(message, padding.PKCS1v15(), hashes.SHA256())


def pem_signer(pem_file: str | Path) -> Callable[[bytes], bytes]:
    """Load ``pem_file`` once and return a signing function bound to it."""
    key = load_private_key(pem_file)

    def sign(message: bytes) -> bytes:
        return sign_with_key(key, message)

    return sign
