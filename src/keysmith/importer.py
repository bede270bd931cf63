"""Private key import pipeline: GitHub App PEM into a KMS external key.

The pipeline is a fixed sequence of stages:

    validate inputs → convert PEM → create KMS key → get import parameters
    → encrypt material → import + validate → persist → retire old key
    → delete PEM file

Stages are pluggable callables collected in :class:`ImportStages` so a test
can replace any one of them with a stub without touching the rest.
:func:`build_stages` wires the production implementations.

Failure handling: once a KMS key exists and until the app table points at
it, any failure tags that key ``Status=Failed`` (best effort) and re-raises
the original exception with cleanup guidance attached as notes. After the
table is updated the new key is live; a failure retiring the old key is
raised as KeyRotationError and the PEM file is kept.
"""

from __future__ import annotations

import enum
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

from keysmith import kms as kms_ops
from keysmith.clients import Clients
from keysmith.config import KeysmithConfig
from keysmith.crypto.pem import convert_pem_to_der, pem_signer
from keysmith.crypto.wrap import encrypt_key_material
from keysmith.errors import (
    AppAuthenticationError,
    ImportValidationError,
    InvalidTableError,
    KeyRotationError,
    PemFileNotFoundError,
)
from keysmith.github.app_jwt import Signer, build_and_sign
from keysmith.github.auth import verify_app_jwt
from keysmith.models import (
    ImportParameters,
    ImportPolicy,
    ImportResult,
    OldKeyDisposal,
    StepResult,
)
from keysmith.tables import list_app_tables, upsert_app_key

log = logging.getLogger(__name__)


class Stage(enum.StrEnum):
    VALIDATE_INPUTS = "validate_inputs"
    CONVERT_PEM = "convert_pem"
    CREATE_KMS_KEY = "create_kms_key"
    GET_IMPORT_PARAMS = "get_import_params"
    ENCRYPT_MATERIAL = "encrypt_material"
    IMPORT_AND_VALIDATE = "import_and_validate"
    PERSIST = "persist"
    ROTATE_OLD_KEY = "rotate_old_key"
    DELETE_PEM_FILE = "delete_pem_file"


# ---------------------------------------------------------------------------
# Stage protocols: what the pipeline expects from each stage
# ---------------------------------------------------------------------------


class InputValidator(Protocol):
    def __call__(self, pem_file: Path, app_id: int | str, table_name: str) -> None: ...


class PemConverter(Protocol):
    def __call__(self, pem_file: Path) -> bytes: ...


class KeyCreator(Protocol):
    def __call__(self, app_id: int | str) -> str: ...


class KeyArnResolver(Protocol):
    def __call__(self, key_id: str) -> str: ...


class ImportParameterFetcher(Protocol):
    def __call__(self, key_arn: str) -> ImportParameters: ...


class MaterialEncryptor(Protocol):
    def __call__(self, private_key_der: bytes, params: ImportParameters) -> bytes: ...


class MaterialImporter(Protocol):
    def __call__(
        self,
        key_arn: str,
        app_id: int | str,
        encrypted_material: bytes,
        import_token: bytes,
    ) -> None: ...


class Persister(Protocol):
    def __call__(self, app_id: int | str, key_arn: str, table_name: str) -> str | None: ...


class OldKeyHandler(Protocol):
    def __call__(self, old_key_arn: str, new_key_arn: str, app_id: int | str) -> None: ...


class FailedKeyTagger(Protocol):
    def __call__(self, key_arn: str) -> None: ...


@dataclass
class ImportStages:
    validate_inputs: InputValidator
    convert_pem: PemConverter
    create_key: KeyCreator
    resolve_key_arn: KeyArnResolver
    get_import_parameters: ImportParameterFetcher
    encrypt_material: MaterialEncryptor
    import_material: MaterialImporter
    persist: Persister
    retire_old_key: OldKeyHandler
    tag_failed: FailedKeyTagger


# ---------------------------------------------------------------------------
# Production stage implementations
# ---------------------------------------------------------------------------


def validate_inputs(
    pem_file: Path,
    app_id: int | str,
    table_name: str,
    *,
    http: httpx.Client,
    list_tables: Callable[[], list[str]],
    make_signer: Callable[[Path], Signer] = pem_signer,
) -> None:
    """Check the PEM exists, belongs to ``app_id``, and the table is an app table.

    Runs before any KMS key is created, so failures here need no cleanup.
    """
    if not pem_file.is_file():
        raise PemFileNotFoundError(str(pem_file))
    log.info("PEM file found at path: %s", pem_file)

    token = build_and_sign(app_id, make_signer(pem_file))
    result = verify_app_jwt(http, app_id, token)
    if not result.verified:
        raise AppAuthenticationError(
            "GitHub authentication failed - invalid private key or App ID mismatch"
            f" ({result.reason})"
        )

    tables = list_tables()
    if table_name not in tables:
        raise InvalidTableError(table_name, tables)

    log.info("PEM file path, App ID and table name validated successfully")


def import_and_validate(
    key_arn: str,
    app_id: int | str,
    encrypted_material: bytes,
    import_token: bytes,
    *,
    kms,
    http: httpx.Client,
) -> None:
    """Import the wrapped material, then prove GitHub accepts KMS signatures.

    KMS checks the wrapping, not that the key is the one GitHub holds the
    public half of; only a round trip through GitHub shows that.
    """
    kms_ops.import_key_material(kms, key_arn, encrypted_material, import_token)

    token = build_and_sign(app_id, kms_ops.kms_signer(kms, key_arn))
    result = verify_app_jwt(http, app_id, token)
    if not result.verified:
        raise ImportValidationError(
            f"Key material import successful but JWT authentication failed ({result.reason})"
        )
    log.info("Key material imported and JWT signing verified for %s", key_arn)


def retire_old_key(
    old_key_arn: str,
    new_key_arn: str,
    app_id: int | str,
    *,
    kms,
    policy: ImportPolicy,
    managed_tag_key: str = kms_ops.DEFAULT_MANAGED_TAG_KEY,
) -> None:
    """Tag the replaced key Inactive and, if the policy says so, schedule deletion."""
    kms_ops.tag_key_inactive(
        kms, old_key_arn, new_key_arn, app_id, managed_tag_key=managed_tag_key
    )
    if policy.old_key_disposal == OldKeyDisposal.TAG_AND_SCHEDULE_DELETION:
        kms_ops.schedule_key_deletion(kms, old_key_arn, policy.pending_window_days)


def build_stages(clients: Clients, config: KeysmithConfig) -> ImportStages:
    """Wire every stage to the real KMS, DynamoDB and GitHub clients."""
    policy = config.policy
    return ImportStages(
        validate_inputs=functools.partial(
            validate_inputs,
            http=clients.github,
            list_tables=functools.partial(
                list_app_tables, clients.tagging, config.managed_tag_key
            ),
        ),
        convert_pem=convert_pem_to_der,
        create_key=functools.partial(
            kms_ops.create_signing_key, clients.kms, managed_tag_key=config.managed_tag_key
        ),
        resolve_key_arn=functools.partial(kms_ops.get_key_arn, clients.kms),
        get_import_parameters=functools.partial(kms_ops.get_import_parameters, clients.kms),
        encrypt_material=encrypt_key_material,
        import_material=functools.partial(
            import_and_validate, kms=clients.kms, http=clients.github
        ),
        persist=lambda app_id, key_arn, table_name: upsert_app_key(
            clients.dynamodb, table_name, app_id, key_arn, policy.app_id_type
        ),
        retire_old_key=functools.partial(
            retire_old_key,
            kms=clients.kms,
            policy=policy,
            managed_tag_key=config.managed_tag_key,
        ),
        tag_failed=functools.partial(kms_ops.tag_key_failed, clients.kms),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _attach_cleanup_notes(
    exc: BaseException, stage: Stage, key_ref: str, tag_failed: FailedKeyTagger
) -> None:
    """Tag the orphaned key Failed; never let a tagging error replace ``exc``.

    ``key_ref`` is the ARN, or the KeyId when the ARN was never resolved.
    """
    exc.add_note(f"Cleanup required: KMS key {key_ref} was created but the import failed.")
    exc.add_note(
        "- Check AWS KMS for keys created during this import and delete them"
        " to avoid incurring costs."
    )
    try:
        tag_failed(key_ref)
    except Exception as tag_exc:
        log.warning("Failed to tag key %s as Failed after %s error: %s", key_ref, stage, tag_exc)
        exc.add_note(f'- Failed to tag key as "Failed": {tag_exc}')


# ---------------------------------------------------------------------------
# Main pipeline
# ---------------------------------------------------------------------------


def import_private_key(
    pem_file_path: str | Path,
    app_id: int | str,
    table_name: str,
    *,
    stages: ImportStages,
) -> ImportResult:
    """Import the PEM private key for ``app_id`` into a new KMS key.

    Every call creates a new key; when ``app_id`` already had one, the old
    key is retired (rotation). The PEM file is deleted only after every other
    stage succeeded.

    Raises the first stage's exception unchanged. If a KMS key had already
    been created it is tagged Failed and the exception carries notes naming
    the orphaned key (its ARN, or its KeyId if DescribeKey never answered).
    """
    pem_file = Path(pem_file_path).resolve()
    steps: list[StepResult] = []
    stage = Stage.VALIDATE_INPUTS
    # KeyId until DescribeKey returns the ARN; either identifies the key for tagging
    created_key: str | None = None

    log.info("Starting GitHub App private key import for App ID %s", app_id)

    try:
        stages.validate_inputs(pem_file, app_id, table_name)
        steps.append(StepResult(name=stage, success=True))

        stage = Stage.CONVERT_PEM
        private_key_der = stages.convert_pem(pem_file)
        steps.append(StepResult(name=stage, success=True))

        stage = Stage.CREATE_KMS_KEY
        created_key = stages.create_key(app_id)
        key_arn = stages.resolve_key_arn(created_key)
        created_key = key_arn
        steps.append(StepResult(name=stage, success=True, detail=key_arn))

        stage = Stage.GET_IMPORT_PARAMS
        params = stages.get_import_parameters(key_arn)
        steps.append(StepResult(name=stage, success=True))

        stage = Stage.ENCRYPT_MATERIAL
        encrypted = stages.encrypt_material(private_key_der, params)
        steps.append(StepResult(name=stage, success=True))

        stage = Stage.IMPORT_AND_VALIDATE
        stages.import_material(key_arn, app_id, encrypted, params.import_token)
        steps.append(StepResult(name=stage, success=True))

        stage = Stage.PERSIST
        previous_arn = stages.persist(app_id, key_arn, table_name)
        steps.append(StepResult(name=stage, success=True, detail=previous_arn or ""))
    except Exception as exc:
        exc.add_note(f"Import failed during stage: {stage}")
        if created_key is not None:
            _attach_cleanup_notes(exc, stage, created_key, stages.tag_failed)
        log.error("Error during import process at %s: %s", stage, exc)
        raise

    log.info('Table "%s" updated with %s for App ID %s', table_name, key_arn, app_id)

    if previous_arn == key_arn:
        previous_arn = None

    if previous_arn:
        stage = Stage.ROTATE_OLD_KEY
        try:
            stages.retire_old_key(previous_arn, key_arn, app_id)
        except Exception as exc:
            log.error("Key %s is active but retiring %s failed: %s", key_arn, previous_arn, exc)
            raise KeyRotationError(previous_arn, key_arn, exc) from exc
        steps.append(StepResult(name=stage, success=True, detail=previous_arn))

    stage = Stage.DELETE_PEM_FILE
    pem_file.unlink()
    steps.append(StepResult(name=stage, success=True, detail=str(pem_file)))
    log.info("Permanently deleted PEM file %s", pem_file)

    return ImportResult(
        app_id=app_id,
        key_arn=key_arn,
        previous_key_arn=previous_arn,
        pem_deleted=True,
        steps=steps,
    )
