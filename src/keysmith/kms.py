"""KMS operations for external-origin GitHub App signing keys.

Every function takes an explicit boto3 KMS client. Service errors
(``botocore.exceptions.ClientError``) propagate unchanged.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import UTC, datetime

from keysmith.errors import ImportParameterError, KeyCreationError, SigningError
from keysmith.models import ImportParameters, KeyStatus

log = logging.getLogger(__name__)

# https://docs.aws.amazon.com/kms/latest/APIReference/API_CreateKey.html
CREATE_KEY_SPEC = "RSA_2048"
# https://docs.aws.amazon.com/kms/latest/APIReference/API_GetParametersForImport.html
WRAPPING_ALGORITHM = "RSA_AES_KEY_WRAP_SHA_256"
WRAPPING_SPEC = "RSA_4096"
SIGNING_ALGORITHM = "RSASSA_PKCS1_V1_5_SHA_256"

DEFAULT_MANAGED_TAG_KEY = "FrameworkManaged"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _tags(**pairs: str) -> list[dict[str, str]]:
    return [{"TagKey": k, "TagValue": v} for k, v in pairs.items()]


def create_signing_key(
    kms,
    app_id: int | str,
    *,
    managed_tag_key: str = DEFAULT_MANAGED_TAG_KEY,
) -> str:
    """Create an empty RSA-2048 SIGN_VERIFY key awaiting imported material.

    The key is tagged Status=Active up front. Returns the KeyId; resolve the
    ARN with :func:`get_key_arn`.
    """
    response = kms.create_key(
        KeySpec=CREATE_KEY_SPEC,
        KeyUsage="SIGN_VERIFY",
        Origin="EXTERNAL",
        Description=f"GitHub App Signing key for App ID {app_id}",
        Tags=_tags(
            Status=KeyStatus.ACTIVE.value,
            CreatedOn=_now(),
            AppId=str(app_id),
            **{managed_tag_key: "true"},
        ),
    )
    key_id = response.get("KeyMetadata", {}).get("KeyId")
    if not key_id:
        raise KeyCreationError("Failed to create KMS key")

    log.info("Created KMS key %s for GitHub App %s", key_id, app_id)
    return key_id


def get_key_arn(kms, key_id: str) -> str:
    described = kms.describe_key(KeyId=key_id)
    key_arn = described.get("KeyMetadata", {}).get("Arn")
    if not key_arn:
        raise KeyCreationError("Failed to retrieve KMS Key Arn")
    return key_arn


def get_import_parameters(kms, key_arn: str) -> ImportParameters:
    """Fetch the wrapping public key and import token for ``key_arn``."""
    response = kms.get_parameters_for_import(
        KeyId=key_arn,
        WrappingAlgorithm=WRAPPING_ALGORITHM,
        WrappingKeySpec=WRAPPING_SPEC,
    )
    public_key = response.get("PublicKey")
    import_token = response.get("ImportToken")
    if not public_key or not import_token:
        raise ImportParameterError("Failed to retrieve wrapping key or import token")
    return ImportParameters(public_key=public_key, import_token=import_token)


def import_key_material(kms, key_arn: str, encrypted_material: bytes, import_token: bytes) -> None:
    kms.import_key_material(
        KeyId=key_arn,
        EncryptedKeyMaterial=encrypted_material,
        ImportToken=import_token,
        ExpirationModel="KEY_MATERIAL_DOES_NOT_EXPIRE",
    )
    log.info("Imported key material into %s", key_arn)


def sign(kms, key_arn: str, message: bytes) -> bytes:
    """Sign ``message`` with RSASSA-PKCS1-v1_5/SHA-256 inside KMS.

    The SHA-256 digest is computed locally and sent as MessageType=DIGEST,
    which keeps the request under KMS's 4 KiB raw message limit.
    """
    digest = hashlib.sha256(message).digest()
    response = kms.sign(
        KeyId=key_arn,
        Message=digest,
        MessageType="DIGEST",
        SigningAlgorithm=SIGNING_ALGORITHM,
    )
    signature = response.get("Signature")
    if not signature:
        raise SigningError("KMS signing failed: Signature is missing or empty")
    return bytes(signature)


def kms_signer(kms, key_arn: str):
    """Return a ``sign(message) -> signature`` callable bound to ``key_arn``."""

    def _sign(message: bytes) -> bytes:
        return sign(kms, key_arn, message)

    return _sign


def tag_key_inactive(
    kms,
    old_key_arn: str,
    new_key_arn: str,
    app_id: int | str,
    *,
    managed_tag_key: str = DEFAULT_MANAGED_TAG_KEY,
) -> None:
    """Mark ``old_key_arn`` as replaced by ``new_key_arn``.

    Tagging overwrites existing values, so repeating it is harmless.
    """
    kms.tag_resource(
        KeyId=old_key_arn,
        Tags=_tags(
            Status=KeyStatus.INACTIVE.value,
            ReplacedBy=new_key_arn,
            ReplacedOn=_now(),
            AppId=str(app_id),
            **{managed_tag_key: "true"},
        ),
    )
    log.info("Tagged old key %s as Inactive", old_key_arn)


def tag_key_failed(kms, key_arn: str) -> None:
    kms.tag_resource(
        KeyId=key_arn,
        Tags=_tags(Status=KeyStatus.FAILED.value, FailedAt=_now()),
    )
    log.info("Tagged key %s as Failed", key_arn)


def schedule_key_deletion(kms, key_arn: str, pending_window_days: int = 30) -> None:
    response = kms.schedule_key_deletion(KeyId=key_arn, PendingWindowInDays=pending_window_days)
    log.info(
        "Scheduled key %s for deletion on %s",
        key_arn,
        response.get("DeletionDate", f"+{pending_window_days}d"),
    )
