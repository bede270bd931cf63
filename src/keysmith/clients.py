"""Service client handles, constructed by the caller and passed explicitly."""

from __future__ import annotations

from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version
from typing import Any

import httpx

from keysmith.config import KeysmithConfig

try:
    USER_AGENT = f"keysmith/{version('keysmith')}"
except PackageNotFoundError:
    USER_AGENT = "keysmith/dev"


@dataclass
class Clients:
    """boto3 clients for KMS, DynamoDB and tagging, plus a GitHub HTTP client."""

    kms: Any
    dynamodb: Any
    tagging: Any
    github: httpx.Client

    @classmethod
    def create(cls, config: KeysmithConfig) -> Clients:
        import boto3
        from botocore.config import Config

        session = boto3.session.Session(region_name=config.aws_region)
        boto_config = Config(user_agent_extra=USER_AGENT)
        return cls(
            kms=session.client("kms", config=boto_config),
            dynamodb=session.client("dynamodb", config=boto_config),
            tagging=session.client("resourcegroupstaggingapi", config=boto_config),
            github=httpx.Client(
                base_url=config.github_api_url,
                headers={"User-Agent": USER_AGENT},
            ),
        )

    def close(self) -> None:
        self.github.close()

    def __enter__(self) -> Clients:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
