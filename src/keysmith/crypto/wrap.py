"""Key material wrapping for KMS ``RSA_AES_KEY_WRAP_SHA_256`` imports.

The imported blob is two parts concatenated:

1. a random AES-256 key encrypted with RSA-OAEP (SHA-256) under the KMS
   wrapping public key, exactly one modulus long;
2. the PKCS#8 key material wrapped with that AES key using AES key wrap
   with padding (RFC 5649, alternative IV ``A65959A6``).
"""

from __future__ import annotations

import os

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, keywrap, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from keysmith.errors import EncryptionError, InvalidKeyMaterialError
from keysmith.models import ImportParameters

AES_KEY_BYTES = 32


def _check_inputs(key_material: bytes, aes_key: bytes) -> None:
    if not key_material:
        raise InvalidKeyMaterialError("Key material cannot be empty")
    if len(aes_key) != AES_KEY_BYTES:
        raise InvalidKeyMaterialError(
            f"AES wrapping key must be {AES_KEY_BYTES} bytes, got {len(aes_key)}"
        )


def wrap_key_material(key_material: bytes, aes_key: bytes) -> bytes:
    """Wrap ``key_material`` under ``aes_key`` with RFC 5649 padding.

    Deterministic for identical inputs. The result is a multiple of 8 bytes
    and at least 8 bytes longer than the input.
    """
    _check_inputs(key_material, aes_key)
    return keywrap.aes_key_wrap_with_padding(wrapping_key=aes_key, key_to_wrap=key_material)


def unwrap_key_material(wrapped: bytes, aes_key: bytes) -> bytes:
    """Inverse of :func:`wrap_key_material`.

    Raises ``cryptography.hazmat.primitives.keywrap.InvalidUnwrap`` when the
    integrity check fails.
    """
    _check_inputs(wrapped, aes_key)
    return keywrap.aes_key_unwrap_with_padding(wrapping_key=aes_key, wrapped_key=wrapped)


def load_wrapping_key(public_key_der: bytes) -> rsa.RSAPublicKey:
    """Parse the SPKI DER wrapping key returned by GetParametersForImport."""
    try:
        key = serialization.load_der_public_key(bytes(public_key_der))
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise EncryptionError(f"Malformed wrapping public key: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise EncryptionError("Wrapping public key is not an RSA key")
    return key


def oaep_sha256() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def encrypt_key_material(private_key_der: bytes, params: ImportParameters) -> bytes:
    """Produce the ``EncryptedKeyMaterial`` blob for ImportKeyMaterial.

    Returns ``RSA-OAEP(aes_key) || AES-KWP(private_key_der, aes_key)`` using a
    freshly generated AES key.
    """
    if not private_key_der:
        raise InvalidKeyMaterialError("Key material cannot be empty")

    wrapping_key = load_wrapping_key(params.public_key)
    aes_key = os.urandom(AES_KEY_BYTES)
    wrapped_material = wrap_key_material(private_key_der, aes_key)

    try:
        encrypted_aes_key = wrapping_key.encrypt(aes_key, oaep_sha256())
    except ValueError as exc:
        raise EncryptionError(f"RSA-OAEP encryption of the AES key failed: {exc}") from exc

    return encrypted_aes_key + wrapped_material
