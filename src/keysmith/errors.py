"""Exception hierarchy for keysmith.

AWS service errors (botocore ``ClientError``) raised by KMS calls are not
wrapped: callers see the service's own error. Everything keysmith detects
itself derives from :class:`KeysmithError`.
"""

from __future__ import annotations


class KeysmithError(Exception):
    """Base class for all keysmith errors."""


# ---------------------------------------------------------------------------
# Input validation: raised before any KMS key exists
# ---------------------------------------------------------------------------


class InputValidationError(KeysmithError):
    """The caller supplied a PEM file, App ID or table that cannot be used."""


class PemFileNotFoundError(InputValidationError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"File not found at the path: {path}")


class AppAuthenticationError(InputValidationError):
    """GitHub rejected a JWT signed with the local PEM for the claimed App ID."""


class InvalidTableError(InputValidationError):
    def __init__(self, table_name: str, available: list[str]) -> None:
        self.table_name = table_name
        self.available = available
        super().__init__(
            f'Invalid table name provided. Table "{table_name}" is not in the list of tables'
        )


# ---------------------------------------------------------------------------
# Cryptography
# ---------------------------------------------------------------------------


class CryptoError(KeysmithError):
    """Bad key input or a local wrap/encrypt failure (not an AWS error)."""


class KeyFormatError(CryptoError):
    """The PEM file is missing, empty, or does not hold an RSA private key."""


class EncryptionError(CryptoError):
    """Key material could not be encrypted for import."""


class InvalidKeyMaterialError(EncryptionError):
    """Empty key material or a wrapping key that is not AES-256."""


# ---------------------------------------------------------------------------
# KMS provisioning and use
# ---------------------------------------------------------------------------


class KmsProvisioningError(KeysmithError):
    """KMS answered but did not return what the pipeline needs."""


class KeyCreationError(KmsProvisioningError):
    pass


class ImportParameterError(KmsProvisioningError):
    pass


class SigningError(KeysmithError):
    """KMS returned no signature."""


class ImportValidationError(KeysmithError):
    """Key material was imported but GitHub does not accept its signatures."""


# ---------------------------------------------------------------------------
# Persistence, lookups and GitHub
# ---------------------------------------------------------------------------


class PersistenceError(KeysmithError):
    """Writing the app table failed."""


class AppKeyNotFoundError(KeysmithError):
    def __init__(self, app_id: int | str, table_name: str) -> None:
        self.app_id = app_id
        self.table_name = table_name
        super().__init__(f"No KMS key registered for App ID {app_id} in table {table_name}")


class GitHubAuthError(KeysmithError):
    """GitHub did not authenticate an app JWT."""


class KeyRotationError(KeysmithError):
    """The new key is persisted and active, but retiring the old key failed.

    The old key's Status tag is left in an unknown state and needs attention.
    """

    def __init__(self, old_key_arn: str, new_key_arn: str, cause: Exception) -> None:
        self.old_key_arn = old_key_arn
        self.new_key_arn = new_key_arn
        super().__init__(
            f"Key {new_key_arn} is active but retiring previous key {old_key_arn} failed: {cause}"
        )
