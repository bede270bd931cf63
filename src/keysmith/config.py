"""keysmith configuration, loaded from a YAML file or environment variables."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from keysmith.kms import DEFAULT_MANAGED_TAG_KEY
from keysmith.models import ImportPolicy

DEFAULT_GITHUB_API_URL = "https://api.github.com"


class KeysmithConfig(BaseModel):
    """All keysmith settings."""

    aws_region: str | None = Field(default=None, description="Region for KMS/DynamoDB clients")
    github_api_url: str = Field(default=DEFAULT_GITHUB_API_URL)
    managed_tag_key: str = Field(
        default=DEFAULT_MANAGED_TAG_KEY,
        description="Tag marking KMS keys and app tables owned by the framework",
    )
    policy: ImportPolicy = Field(default_factory=ImportPolicy)

    @classmethod
    def from_env(cls) -> KeysmithConfig:
        """Load configuration from environment variables."""
        policy: dict = {}
        if app_id_type := os.environ.get("KEYSMITH_APP_ID_TYPE"):
            policy["app_id_type"] = app_id_type
        if disposal := os.environ.get("KEYSMITH_OLD_KEY_DISPOSAL"):
            policy["old_key_disposal"] = disposal
        if window := os.environ.get("KEYSMITH_PENDING_WINDOW_DAYS"):
            policy["pending_window_days"] = int(window)

        return cls(
            aws_region=os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION"),
            github_api_url=os.environ.get("KEYSMITH_GITHUB_API_URL", DEFAULT_GITHUB_API_URL),
            managed_tag_key=os.environ.get("KEYSMITH_MANAGED_TAG_KEY", DEFAULT_MANAGED_TAG_KEY),
            policy=ImportPolicy.model_validate(policy),
        )

    @classmethod
    def from_file(cls, path: Path) -> KeysmithConfig:
        """Parse a YAML config file. Missing keys take their defaults."""
        raw = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)


def load_config(path: Path | None = None) -> KeysmithConfig:
    """Load from ``path``, else ``KEYSMITH_CONFIG``, else the environment."""
    if path is None and os.environ.get("KEYSMITH_CONFIG"):
        path = Path(os.environ["KEYSMITH_CONFIG"])
    if path is not None:
        return KeysmithConfig.from_file(path)
    return KeysmithConfig.from_env()
