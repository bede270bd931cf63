"""Shared fixtures: in-memory stand-ins for KMS, DynamoDB, tagging and GitHub.

The fakes behave like the real services where the import pipeline depends on
it: FakeKmsClient really unwraps imported material with its RSA-4096 wrapping
key and signs with it, and FakeGitHub verifies RS256 signatures against the
public key registered for each App ID.
"""

from __future__ import annotations

import json
import re
from pathlib import Path

import httpx
import jwt
import pytest
from botocore.exceptions import ClientError
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed
from jwt.utils import base64url_decode

from keysmith.clients import Clients
from keysmith.config import KeysmithConfig
from keysmith.crypto.wrap import oaep_sha256, unwrap_key_material
from keysmith.importer import build_stages

APP_ID = 123456
APP_TABLE = "apps-table"
ACCOUNT_PREFIX = "arn:aws:kms:us-east-1:111122223333:key/"


def client_error(operation: str, code: str = "KMSInternalException", message: str = "boom"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def write_pem(path: Path, key: rsa.RSAPrivateKey, *, pkcs1: bool = True) -> Path:
    """Write ``key`` as PEM; PKCS#1 by default, like GitHub's downloads."""
    fmt = (
        serialization.PrivateFormat.TraditionalOpenSSL
        if pkcs1
        else serialization.PrivateFormat.PKCS8
    )
    path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=fmt,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return path


# ---------------------------------------------------------------------------
# AWS fakes
# ---------------------------------------------------------------------------


class FakeKmsClient:
    """Just enough of the boto3 KMS client for external-origin signing keys."""

    def __init__(self, wrapping_key: rsa.RSAPrivateKey) -> None:
        self.wrapping_key = wrapping_key
        self.keys: dict[str, dict] = {}
        self.calls: list[tuple[str, dict]] = []
        self.fail: dict[str, Exception] = {}
        self._counter = 0

    def _record(self, operation: str, kwargs: dict) -> None:
        self.calls.append((operation, kwargs))
        if operation in self.fail:
            raise self.fail[operation]

    def calls_to(self, operation: str) -> list[dict]:
        return [kwargs for op, kwargs in self.calls if op == operation]

    def _key(self, key_id: str) -> dict:
        for arn, key in self.keys.items():
            if key_id in (arn, key["key_id"]):
                return key
        raise client_error("Lookup", "NotFoundException", f"Key {key_id} not found")

    def tags(self, key_arn: str) -> dict[str, str]:
        return self._key(key_arn)["tags"]

    def create_key(self, **kwargs) -> dict:
        self._record("CreateKey", kwargs)
        self._counter += 1
        key_id = f"key-{self._counter:04d}"
        arn = ACCOUNT_PREFIX + key_id
        self.keys[arn] = {
            "key_id": key_id,
            "arn": arn,
            "tags": {t["TagKey"]: t["TagValue"] for t in kwargs.get("Tags", [])},
            "material": None,
            "deletion_window": None,
        }
        return {"KeyMetadata": {"KeyId": key_id, "Arn": arn, "Origin": kwargs["Origin"]}}

    def describe_key(self, **kwargs) -> dict:
        self._record("DescribeKey", kwargs)
        key = self._key(kwargs["KeyId"])
        return {"KeyMetadata": {"KeyId": key["key_id"], "Arn": key["arn"]}}

    def get_parameters_for_import(self, **kwargs) -> dict:
        self._record("GetParametersForImport", kwargs)
        key = self._key(kwargs["KeyId"])
        public_der = self.wrapping_key.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return {
            "KeyId": key["arn"],
            "PublicKey": public_der,
            "ImportToken": f"token-{key['key_id']}".encode(),
        }

    def import_key_material(self, **kwargs) -> dict:
        self._record("ImportKeyMaterial", kwargs)
        key = self._key(kwargs["KeyId"])
        if kwargs["ImportToken"] != f"token-{key['key_id']}".encode():
            raise client_error("ImportKeyMaterial", "InvalidImportTokenException")
        blob = kwargs["EncryptedKeyMaterial"]
        split = self.wrapping_key.key_size // 8
        aes_key = self.wrapping_key.decrypt(blob[:split], oaep_sha256())
        der = unwrap_key_material(blob[split:], aes_key)
        key["material"] = serialization.load_der_private_key(der, password=None)
        return {}

    def sign(self, **kwargs) -> dict:
        self._record("Sign", kwargs)
        key = self._key(kwargs["KeyId"])
        if key["material"] is None:
            raise client_error("Sign", "KMSInvalidStateException", "PendingImport")
        assert kwargs["MessageType"] == "DIGEST"
        signature = key["material"].sign(
            kwargs["Message"], padding.PKCS1v15(), Prehashed(hashes.SHA256())
        )
        return {"KeyId": key["arn"], "Signature": signature}

    def tag_resource(self, **kwargs) -> dict:
        self._record("TagResource", kwargs)
        key = self._key(kwargs["KeyId"])
        key["tags"].update({t["TagKey"]: t["TagValue"] for t in kwargs["Tags"]})
        return {}

    def schedule_key_deletion(self, **kwargs) -> dict:
        self._record("ScheduleKeyDeletion", kwargs)
        key = self._key(kwargs["KeyId"])
        key["deletion_window"] = kwargs["PendingWindowInDays"]
        return {"KeyId": key["arn"], "DeletionDate": "2026-11-18T00:00:00Z"}


class FakeDynamoDBClient:
    def __init__(self) -> None:
        self.tables: dict[str, dict[tuple[str, str], dict]] = {}
        self.fail: dict[str, Exception] = {}

    @staticmethod
    def _key(attr: dict[str, str]) -> tuple[str, str]:
        return next(iter(attr.items()))

    def put_item(self, **kwargs) -> dict:
        if "PutItem" in self.fail:
            raise self.fail["PutItem"]
        table = self.tables.setdefault(kwargs["TableName"], {})
        item = kwargs["Item"]
        old = table.get(self._key(item["AppId"]))
        table[self._key(item["AppId"])] = item
        if old is not None and kwargs.get("ReturnValues") == "ALL_OLD":
            return {"Attributes": old}
        return {}

    def get_item(self, **kwargs) -> dict:
        table = self.tables.get(kwargs["TableName"], {})
        item = table.get(self._key(kwargs["Key"]["AppId"]))
        return {"Item": item} if item is not None else {}


class FakePaginator:
    def __init__(self, arns: list[str], calls: list[dict]) -> None:
        self._arns = arns
        self._calls = calls

    def paginate(self, **kwargs):
        self._calls.append(kwargs)
        per_page = kwargs.get("ResourcesPerPage", 100)
        for start in range(0, max(len(self._arns), 1), per_page):
            chunk = self._arns[start : start + per_page]
            yield {"ResourceTagMappingList": [{"ResourceARN": arn, "Tags": []} for arn in chunk]}


class FakeTaggingClient:
    def __init__(self, table_names: list[str]) -> None:
        self.arns = [
            f"arn:aws:dynamodb:us-east-1:111122223333:table/{name}" for name in table_names
        ]
        self.calls: list[dict] = []

    def get_paginator(self, operation: str) -> FakePaginator:
        assert operation == "get_resources"
        return FakePaginator(self.arns, self.calls)


# ---------------------------------------------------------------------------
# GitHub fake
# ---------------------------------------------------------------------------


class FakeGitHub:
    """Verifies app JWTs the way GitHub does: by the public key of the ``iss`` app."""

    def __init__(self, apps: dict[int, rsa.RSAPublicKey]) -> None:
        self.apps = apps
        self.requests: list[httpx.Request] = []

    def _authenticate(self, request: httpx.Request) -> int | None:
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer "):
            return None
        token = auth.removeprefix("Bearer ")
        try:
            claims = json.loads(base64url_decode(token.split(".")[1]))
            public_key = self.apps.get(int(claims["iss"]))
            if public_key is None:
                return None
            jwt.PyJWS().decode(token, public_key, algorithms=["RS256"])
        except (jwt.PyJWTError, ValueError, KeyError, IndexError):
            return None
        return int(claims["iss"])

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        app_id = self._authenticate(request)
        if app_id is None:
            return httpx.Response(401, json={"message": "A JSON web token could not be decoded"})

        if request.method == "GET" and request.url.path == "/app":
            return httpx.Response(200, json={"id": app_id, "name": f"app-{app_id}"})

        m = re.fullmatch(r"/app/installations/(\d+)/access_tokens", request.url.path)
        if request.method == "POST" and m:
            return httpx.Response(
                201,
                json={
                    "token": f"ghs_installation{m.group(1)}",
                    "expires_at": "2026-10-19T13:00:00Z",
                },
            )
        return httpx.Response(404, json={"message": "Not Found"})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def wrapping_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=4096)


@pytest.fixture(scope="session")
def app_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def pem_file(tmp_path: Path, app_key: rsa.RSAPrivateKey) -> Path:
    return write_pem(tmp_path / "app.private-key.pem", app_key)


@pytest.fixture
def kms(wrapping_key: rsa.RSAPrivateKey) -> FakeKmsClient:
    return FakeKmsClient(wrapping_key)


@pytest.fixture
def dynamodb() -> FakeDynamoDBClient:
    return FakeDynamoDBClient()


@pytest.fixture
def tagging() -> FakeTaggingClient:
    return FakeTaggingClient([APP_TABLE, "other-apps-table"])


@pytest.fixture
def github(app_key: rsa.RSAPrivateKey, other_key: rsa.RSAPrivateKey) -> FakeGitHub:
    return FakeGitHub({APP_ID: app_key.public_key(), 999: other_key.public_key()})


@pytest.fixture
def http(github: FakeGitHub):
    client = httpx.Client(
        transport=httpx.MockTransport(github.handle),
        base_url="https://api.github.com",
    )
    yield client
    client.close()


@pytest.fixture
def clients(kms, dynamodb, tagging, http) -> Clients:
    return Clients(kms=kms, dynamodb=dynamodb, tagging=tagging, github=http)


@pytest.fixture
def config() -> KeysmithConfig:
    return KeysmithConfig()


@pytest.fixture
def stages(clients: Clients, config: KeysmithConfig):
    return build_stages(clients, config)
