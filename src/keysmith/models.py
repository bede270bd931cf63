"""Data models for GitHub App key import and credential issuing."""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, Field


class KeyStatus(enum.StrEnum):
    """Lifecycle state of a KMS key, recorded in its Status tag."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"
    FAILED = "Failed"


class AppIdType(enum.StrEnum):
    """DynamoDB attribute type used for the AppId partition key."""

    NUMBER = "number"
    STRING = "string"


class OldKeyDisposal(enum.StrEnum):
    """What happens to the previous key when an App ID is rotated."""

    TAG_ONLY = "tag_only"
    TAG_AND_SCHEDULE_DELETION = "tag_and_schedule_deletion"


class ImportPolicy(BaseModel):
    """Policy knobs distinguishing app table flavours."""

    app_id_type: AppIdType = AppIdType.NUMBER
    old_key_disposal: OldKeyDisposal = OldKeyDisposal.TAG_ONLY
    pending_window_days: int = Field(default=30, ge=7, le=30)


class AppKeyRecord(BaseModel):
    """A row of the app table: one active KMS key per GitHub App."""

    app_id: int | str
    kms_key_arn: str


class ImportParameters(BaseModel):
    """Wrapping public key (SPKI DER) and import token returned by KMS."""

    public_key: bytes
    import_token: bytes


class StepResult(BaseModel):
    """Result of a single import pipeline stage."""

    name: str
    success: bool
    detail: str = ""


class ImportResult(BaseModel):
    """Outcome of a successful private key import."""

    app_id: int | str
    key_arn: str
    previous_key_arn: str | None = None
    pem_deleted: bool = False
    steps: list[StepResult] = Field(default_factory=list)

    @property
    def rotated(self) -> bool:
        return self.previous_key_arn not in (None, self.key_arn)


class AuthResult(BaseModel):
    """Result of checking an app JWT against GitHub's /app endpoint."""

    verified: bool
    app_id: int | None = None  # id reported by GitHub, when the call succeeded
    reason: str = ""
    status_code: int | None = None


class AppToken(BaseModel):
    """A KMS-signed app JWT and the moment it stops being accepted."""

    token: str
    expires_at: datetime


class InstallationToken(BaseModel):
    """Installation access token minted through the GitHub API."""

    token: str
    expires_at: datetime | None = None
    installation_id: int
