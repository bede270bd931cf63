"""GitHub App JWT construction with a pluggable RS256 signer.

PyJWT's ``jwt.encode`` needs the private key in-process. Keys imported into
KMS never leave it, so the token is assembled here and only the signature is
delegated: to a local PEM key during validation, or to KMS ``Sign``.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable

from jwt.utils import base64url_encode

JWT_HEADER = {"alg": "RS256", "typ": "JWT"}
CLOCK_DRIFT_SECONDS = 60
JWT_LIFETIME_SECONDS = 600  # 10 minutes, the maximum GitHub accepts

Signer = Callable[[bytes], bytes]


def _encode_segment(data: dict) -> bytes:
    return base64url_encode(json.dumps(data, separators=(",", ":")).encode("utf-8"))


def build_claims(app_id: int | str, now: int | None = None) -> dict:
    """Return the iat/exp/iss payload for ``app_id``."""
    if now is None:
        now = int(time.time())
    return {
        "iat": now - CLOCK_DRIFT_SECONDS,
        "exp": now + JWT_LIFETIME_SECONDS,
        "iss": app_id,
    }


def build_signing_input(app_id: int | str, now: int | None = None) -> tuple[bytes, dict]:
    """Return ``base64url(header) + "." + base64url(payload)`` and the claims."""
    claims = build_claims(app_id, now)
    signing_input = _encode_segment(JWT_HEADER) + b"." + _encode_segment(claims)
    return signing_input, claims


def build_and_sign(app_id: int | str, sign: Signer, now: int | None = None) -> str:
    """Build an app JWT and sign it with ``sign``.

    Exceptions raised by ``sign`` propagate unchanged.
    """
    token, _ = build_and_sign_with_claims(app_id, sign, now)
    return token


def build_and_sign_with_claims(
    app_id: int | str, sign: Signer, now: int | None = None
) -> tuple[str, dict]:
    signing_input, claims = build_signing_input(app_id, now)
    signature = sign(signing_input)
    token = signing_input + b"." + base64url_encode(signature)
    return token.decode("ascii"), claims
