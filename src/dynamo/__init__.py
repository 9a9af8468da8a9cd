"""
DynamoDB backend for the `storage` contract.

- config: `Config` (environment-driven) and `Config.open()`
- codec: blob codec for `Keys` / `OfflineSessions` and attribute conversion
- store: `DynamoStorage` and the `create_table` bootstrap helper
"""

from .codec import EntityCodec
from .config import Config
from .store import DynamoStorage, create_table

__all__ = ["Config", "DynamoStorage", "EntityCodec", "create_table"]
