"""App table discovery and the AppId → KMS key ARN mapping in DynamoDB."""

from __future__ import annotations

import logging

from botocore.exceptions import BotoCoreError, ClientError

from keysmith.errors import AppKeyNotFoundError, PersistenceError
from keysmith.models import AppIdType, AppKeyRecord

log = logging.getLogger(__name__)

CREDENTIAL_MANAGER = "CredentialManager"
APP_TABLE = "AppTable"
RESOURCES_PER_PAGE = 10


def list_app_tables(tagging, managed_tag_key: str) -> list[str]:
    """Return names of DynamoDB tables tagged as credential-manager app tables."""
    paginator = tagging.get_paginator("get_resources")
    tables: list[str] = []
    for page in paginator.paginate(
        ResourceTypeFilters=["dynamodb:table"],
        TagFilters=[
            {"Key": managed_tag_key, "Values": [CREDENTIAL_MANAGER]},
            {"Key": CREDENTIAL_MANAGER, "Values": [APP_TABLE]},
        ],
        ResourcesPerPage=RESOURCES_PER_PAGE,
    ):
        for mapping in page.get("ResourceTagMappingList", []):
            # arn:aws:dynamodb:region:account:table/name
            tables.append(mapping["ResourceARN"].rsplit("/", 1)[-1])
    log.debug("found %d app tables: %s", len(tables), tables)
    return tables


def _app_id_attr(app_id: int | str, app_id_type: AppIdType) -> dict[str, str]:
    if app_id_type == AppIdType.NUMBER:
        return {"N": str(app_id)}
    return {"S": str(app_id)}


def upsert_app_key(
    dynamodb,
    table_name: str,
    app_id: int | str,
    key_arn: str,
    app_id_type: AppIdType = AppIdType.NUMBER,
) -> str | None:
    """Point ``app_id`` at ``key_arn`` and return the ARN it replaced, if any.

    The put is unconditional; concurrent rotations of the same App ID are
    last-writer-wins.
    """
    try:
        response = dynamodb.put_item(
            TableName=table_name,
            Item={
                "AppId": _app_id_attr(app_id, app_id_type),
                "KmsKeyArn": {"S": key_arn},
            },
            ReturnValues="ALL_OLD",
        )
    except (ClientError, BotoCoreError) as exc:
        raise PersistenceError(f"Failed to update table {table_name}: {exc}") from exc

    previous = response.get("Attributes", {}).get("KmsKeyArn", {}).get("S")
    log.info("Table %s now maps App ID %s to %s", table_name, app_id, key_arn)
    return previous or None


def get_app_key(
    dynamodb,
    table_name: str,
    app_id: int | str,
    app_id_type: AppIdType = AppIdType.NUMBER,
) -> AppKeyRecord:
    """Read the app table row for ``app_id``."""
    response = dynamodb.get_item(
        TableName=table_name,
        Key={"AppId": _app_id_attr(app_id, app_id_type)},
        ConsistentRead=True,
    )
    item = response.get("Item", {})
    key_arn = item.get("KmsKeyArn", {}).get("S")
    if not key_arn:
        raise AppKeyNotFoundError(app_id, table_name)

    stored = item["AppId"]
    return AppKeyRecord(
        app_id=int(stored["N"]) if "N" in stored else stored["S"],
        kms_key_arn=key_arn,
    )


def get_app_key_arn(
    dynamodb,
    table_name: str,
    app_id: int | str,
    app_id_type: AppIdType = AppIdType.NUMBER,
) -> str:
    """Return the active KMS key ARN for ``app_id``."""
    return get_app_key(dynamodb, table_name, app_id, app_id_type).kms_key_arn
