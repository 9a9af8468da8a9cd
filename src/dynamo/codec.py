from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Type, TypeVar, Union

from boto3.dynamodb.types import Binary
from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel

from storage.models import Keys, OfflineSessions


T = TypeVar("T", bound=BaseModel)

# Entities whose nested, dynamically shaped fields DynamoDB attributes cannot
# describe well; they are persisted as a single opaque binary attribute.
BLOB_ENTITIES = (Keys, OfflineSessions)


class EntityCodec:
    """
    Converts `Keys` and `OfflineSessions` to and from an opaque blob.

    - The blob is the compact JSON encoding of the model (bytes fields base64).
    - If a Fernet key is supplied, the JSON is encrypted; the keys record holds
      private signing material, so this is recommended outside of tests.
    - Decoding raises `ValueError` for an invalid Fernet token and pydantic's
      `ValidationError` (also a `ValueError`) for malformed content.
    """

    def __init__(self, fernet_key: Optional[Union[str, bytes]] = None) -> None:
        if isinstance(fernet_key, str):
            fernet_key = fernet_key.encode("ascii")
        # Fernet keys are urlsafe base64 of 32 random bytes
        self._fernet = Fernet(fernet_key) if fernet_key else None

    @property
    def encrypted(self) -> bool:
        return self._fernet is not None

    def encode(self, entity: BaseModel) -> bytes:
        if not isinstance(entity, BLOB_ENTITIES):
            raise TypeError(f"{type(entity).__name__} is not stored as a blob")
        payload = entity.model_dump_json().encode("utf-8")
        if self._fernet is not None:
            return self._fernet.encrypt(payload)
        return payload

    def decode(self, model: Type[T], blob: bytes) -> T:
        if model not in BLOB_ENTITIES:
            raise TypeError(f"{model.__name__} is not stored as a blob")
        data = bytes(blob)
        if self._fernet is not None:
            try:
                data = self._fernet.decrypt(data)
            except InvalidToken as ex:
                raise ValueError(
                    f"Failed to decrypt {model.__name__}: invalid Fernet token"
                ) from ex
        return model.model_validate_json(data)


# -------- Native attribute conversion --------
def _to_attribute(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float):
        # boto3 rejects float; numbers go over the wire as Decimal
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_attribute(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_attribute(v) for v in value]
    return value


def _from_attribute(value: Any) -> Any:
    if isinstance(value, Binary):
        return value.value
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_attribute(v) for k, v in value.items()}
    if isinstance(value, (list, set, frozenset)):
        return [_from_attribute(v) for v in value]
    return value


def to_attributes(entity: BaseModel) -> Dict[str, Any]:
    """Model fields as DynamoDB attribute values (datetimes become ISO-8601)."""
    return {k: _to_attribute(v) for k, v in entity.model_dump().items()}


def from_attributes(item: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize what boto3 returns (Binary, Decimal, sets) to plain Python values."""
    return {k: _from_attribute(v) for k, v in item.items()}
