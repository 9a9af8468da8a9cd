from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from .store import DynamoStorage


logger = logging.getLogger(__name__)

# Environment variable names
ENV_TABLE = "IDP_DYNAMODB_TABLE"
ENV_KIND_PREFIX = "IDP_DYNAMODB_KIND_PREFIX"
ENV_REGION = "IDP_DYNAMODB_REGION"
ENV_ENDPOINT = "IDP_DYNAMODB_ENDPOINT"  # DynamoDB Local / emulator
ENV_FERNET_KEY = "IDP_DYNAMODB_FERNET_KEY"

# Region fallback shared with the rest of the AWS tooling
FALLBACK_ENV_REGION = "AWS_REGION"


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


@dataclass
class Config:
    """
    Settings for the DynamoDB storage backend.

    - table_name: DynamoDB table holding every kind (required).
    - kind_prefix: prepended to each kind name, so several deployments (or a
      test run) can share one table without seeing each other's rows.
    - region_name / endpoint_url: passed to boto3; set endpoint_url to point
      at DynamoDB Local.
    - fernet_key: optional key used to encrypt the keys and offline-session
      blobs at rest.
    """

    table_name: str
    kind_prefix: str = ""
    region_name: Optional[str] = None
    endpoint_url: Optional[str] = None
    fernet_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Config":
        table_name = _getenv(ENV_TABLE)
        if not table_name:
            raise RuntimeError(
                f"Missing required environment variables for DynamoDB storage: {ENV_TABLE}"
            )
        return cls(
            table_name=table_name,
            kind_prefix=_getenv(ENV_KIND_PREFIX, "") or "",
            region_name=_getenv(ENV_REGION, _getenv(FALLBACK_ENV_REGION)),
            endpoint_url=_getenv(ENV_ENDPOINT),
            fernet_key=_getenv(ENV_FERNET_KEY),
        )

    def open(self, *, table: Optional[Any] = None) -> DynamoStorage:
        """Build a storage backend. An injected `table` is used as-is and not closed."""
        storage = DynamoStorage(
            table=table,
            table_name=self.table_name,
            kind_prefix=self.kind_prefix,
            fernet_key=self.fernet_key,
            region_name=self.region_name,
            endpoint_url=self.endpoint_url,
        )
        logger.info(
            "opened DynamoDB storage on table %r (kind prefix %r, encrypted blobs: %s)",
            self.table_name,
            self.kind_prefix,
            self.fernet_key is not None,
        )
        return storage
