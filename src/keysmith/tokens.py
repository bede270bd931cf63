"""GitHub App credentials signed by the imported KMS key."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from keysmith import kms as kms_ops
from keysmith.clients import Clients
from keysmith.github.app_jwt import build_and_sign_with_claims
from keysmith.github.auth import create_installation_token, require_app_jwt
from keysmith.models import AppIdType, AppToken, InstallationToken
from keysmith.tables import get_app_key_arn

log = logging.getLogger(__name__)


def get_app_token(
    clients: Clients,
    app_id: int | str,
    table_name: str,
    app_id_type: AppIdType = AppIdType.NUMBER,
) -> AppToken:
    """Sign an app JWT with the App's active KMS key and check GitHub accepts it.

    Raises AppKeyNotFoundError if the App has no key in ``table_name`` and
    GitHubAuthError if GitHub rejects the token.
    """
    key_arn = get_app_key_arn(clients.dynamodb, table_name, app_id, app_id_type)
    log.debug("signing app token for App ID %s with %s", app_id, key_arn)

    token, claims = build_and_sign_with_claims(app_id, kms_ops.kms_signer(clients.kms, key_arn))
    require_app_jwt(clients.github, app_id, token)

    log.info("Issued app token for App ID %s", app_id)
    return AppToken(token=token, expires_at=datetime.fromtimestamp(claims["exp"], UTC))


def get_installation_access_token(
    clients: Clients,
    app_id: int | str,
    installation_id: int,
    table_name: str,
    *,
    repositories: list[str] | None = None,
    app_id_type: AppIdType = AppIdType.NUMBER,
) -> InstallationToken:
    """Mint an installation access token, authenticating as the App via KMS."""
    app_token = get_app_token(clients, app_id, table_name, app_id_type)
    installation_token = create_installation_token(
        clients.github, app_token.token, installation_id, repositories
    )
    log.info("Issued installation token for installation %s", installation_id)
    return installation_token
