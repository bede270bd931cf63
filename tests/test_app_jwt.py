"""Tests for app JWT construction."""

import json

import jwt
import pytest
from jwt.utils import base64url_decode

from keysmith.crypto.pem import sign_with_key
from keysmith.github.app_jwt import build_and_sign, build_claims, build_signing_input


@pytest.mark.parametrize("app_id", [1, 123456, "987654"])
def test_signing_input_structure(app_id):
    signing_input, claims = build_signing_input(app_id, now=1_700_000_000)

    header_b64, payload_b64 = signing_input.split(b".")
    header = json.loads(base64url_decode(header_b64))
    payload = json.loads(base64url_decode(payload_b64))

    assert header == {"alg": "RS256", "typ": "JWT"}
    assert payload == claims
    assert payload["iss"] == app_id
    assert payload["exp"] - payload["iat"] == 660
    assert b"=" not in signing_input


def test_claims_allow_for_clock_drift():
    claims = build_claims(42, now=1000)
    assert claims == {"iat": 940, "exp": 1600, "iss": 42}


def test_signature_is_appended_and_verifiable(app_key):
    token = build_and_sign(123456, lambda msg: sign_with_key(app_key, msg))

    assert token.count(".") == 2
    payload = jwt.PyJWS().decode(token, app_key.public_key(), algorithms=["RS256"])
    assert json.loads(payload)["iss"] == 123456


def test_signer_receives_signing_input():
    seen = []

    def sign(message: bytes) -> bytes:
        seen.append(message)
        return b"\x01\x02"

    token = build_and_sign(7, sign, now=100)

    signing_input, _ = build_signing_input(7, now=100)
    assert seen == [signing_input]
    assert token == signing_input.decode() + ".AQI"


def test_signer_errors_propagate():
    class Boom(Exception):
        pass

    def sign(message: bytes) -> bytes:
        raise Boom("signing failed")

    with pytest.raises(Boom, match="signing failed"):
        build_and_sign(7, sign)
