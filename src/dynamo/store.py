from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

import boto3
from botocore.exceptions import ClientError
from pydantic import BaseModel

from storage.errors import AlreadyExistsError, NotFoundError
from storage.interface import Storage
from storage.models import (
    AuthCode,
    AuthRequest,
    Client,
    Connector,
    GCResult,
    Keys,
    OfflineSessions,
    Password,
    RefreshToken,
)

from .codec import BLOB_ENTITIES, EntityCodec, from_attributes, to_attributes


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# Kind names; the configured prefix is prepended to form the partition key
KIND_CLIENT = "Client"
KIND_AUTH_CODE = "AuthCode"
KIND_AUTH_REQUEST = "AuthRequest"
KIND_REFRESH_TOKEN = "RefreshToken"
KIND_PASSWORD = "Password"
KIND_OFFLINE_SESSIONS = "OfflineSessions"
KIND_CONNECTOR = "Connector"
KIND_KEYS = "Keys"

KEYS_ID = "allKeys"

# Item layout
ATTR_KIND = "pk"
ATTR_NAME = "sk"
ATTR_REV = "rev"
ATTR_BLOB = "blob"

_RESERVED_ATTRS = (ATTR_KIND, ATTR_NAME, ATTR_REV)
_CONDITION_FAILED = "ConditionalCheckFailedException"


def _error_code(e: ClientError) -> Optional[str]:
    return e.response.get("Error", {}).get("Code")


def _offline_sessions_id(user_id: str, conn_id: str) -> str:
    return f"{user_id}|{conn_id}"


def _as_utc(dt: datetime) -> datetime:
    # Naive timestamps are taken to be UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _expired(expiry: Optional[datetime], now: datetime) -> bool:
    # An unset expiry never protects a row from collection
    return expiry is None or _as_utc(expiry) < now


class DynamoStorage(Storage):
    """
    DynamoDB-backed implementation of the `Storage` contract.

    Layout
    - One table with a composite key: `pk` is the kind (`kind_prefix` + kind
      name), `sk` the business key (ID, lowercased email, or
      "{user_id}|{conn_id}" for offline sessions).
    - Most entities are stored as native attributes. `Keys` and
      `OfflineSessions` are stored as one opaque `blob` attribute (see
      `EntityCodec`).
    - Each item carries a `rev` counter; updates are conditional puts guarded
      on the `rev` that was read, so a concurrent writer makes the update fail
      with the store's `ConditionalCheckFailedException` instead of being lost.

    No retries are performed here. Errors other than the contract's
    `NotFoundError` / `AlreadyExistsError` propagate unmodified from boto3.
    """

    def __init__(
        self,
        *,
        table: Optional[Any] = None,
        table_name: Optional[str] = None,
        kind_prefix: str = "",
        fernet_key: Optional[Union[str, bytes]] = None,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ) -> None:
        self._resource = None
        if table is None:
            if not table_name:
                raise ValueError("table_name is required when no table is injected")
            self._resource = boto3.resource(
                "dynamodb", region_name=region_name, endpoint_url=endpoint_url
            )
            table = self._resource.Table(table_name)
        self._table = table
        self._kind_prefix = kind_prefix
        self._codec = EntityCodec(fernet_key)
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._resource is not None:
            self._resource.meta.client.close()
        logger.info("closed DynamoDB storage (kind prefix %r)", self._kind_prefix)

    # -------- Item helpers --------
    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("storage is closed")

    def _key(self, kind: str, name: str) -> Dict[str, str]:
        return {ATTR_KIND: self._kind_prefix + kind, ATTR_NAME: name}

    def _encode(self, kind: str, name: str, entity: BaseModel, rev: int) -> Dict[str, Any]:
        if isinstance(entity, BLOB_ENTITIES):
            item: Dict[str, Any] = {ATTR_BLOB: self._codec.encode(entity)}
        else:
            item = to_attributes(entity)
        item.update(self._key(kind, name))
        item[ATTR_REV] = rev
        return item

    def _decode(self, model: Type[T], item: Dict[str, Any]) -> T:
        attrs = from_attributes(item)
        if model in BLOB_ENTITIES:
            return self._codec.decode(model, attrs[ATTR_BLOB])
        for name in _RESERVED_ATTRS:
            attrs.pop(name, None)
        return model.model_validate(attrs)

    def _get_item(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        resp = self._table.get_item(Key=self._key(kind, name), ConsistentRead=True)
        return resp.get("Item")

    # -------- Core operations --------
    def _create(self, kind: str, name: str, entity: BaseModel) -> None:
        self._check_open()
        try:
            self._table.put_item(
                Item=self._encode(kind, name, entity, rev=0),
                ConditionExpression="attribute_not_exists(#sk)",
                ExpressionAttributeNames={"#sk": ATTR_NAME},
            )
        except ClientError as e:
            if _error_code(e) == _CONDITION_FAILED:
                raise AlreadyExistsError(f"{kind} {name!r} already exists") from e
            raise
        logger.debug("created %s %r", kind, name)

    def _get(self, kind: str, name: str, model: Type[T]) -> T:
        self._check_open()
        item = self._get_item(kind, name)
        if item is None:
            raise NotFoundError(f"{kind} {name!r} not found")
        return self._decode(model, item)

    def _query_items(self, kind: str) -> List[Dict[str, Any]]:
        self._check_open()
        kwargs: Dict[str, Any] = {
            "KeyConditionExpression": "#pk = :pk",
            "ExpressionAttributeNames": {"#pk": ATTR_KIND},
            "ExpressionAttributeValues": {":pk": self._kind_prefix + kind},
            "ConsistentRead": True,
        }
        out: List[Dict[str, Any]] = []
        while True:
            resp = self._table.query(**kwargs)
            out.extend(resp.get("Items", []))
            last = resp.get("LastEvaluatedKey")
            if not last:
                return out
            kwargs["ExclusiveStartKey"] = last

    def _list(self, kind: str, model: Type[T]) -> List[T]:
        return [self._decode(model, item) for item in self._query_items(kind)]

    def _delete(self, kind: str, name: str) -> None:
        self._check_open()
        try:
            self._table.delete_item(
                Key=self._key(kind, name),
                ConditionExpression="attribute_exists(#sk)",
                ExpressionAttributeNames={"#sk": ATTR_NAME},
            )
        except ClientError as e:
            if _error_code(e) == _CONDITION_FAILED:
                raise NotFoundError(f"{kind} {name!r} not found") from e
            raise
        logger.debug("deleted %s %r", kind, name)

    def _update(
        self,
        kind: str,
        name: str,
        model: Type[T],
        updater: Callable[[T], T],
        *,
        create_missing: bool = False,
    ) -> None:
        """Read-modify-write of one item.

        The updater runs between the consistent read and the conditional put;
        if it raises, nothing is written. With `create_missing`, an absent
        item starts from `model()` and the put requires it to still be absent.
        """
        self._check_open()
        item = self._get_item(kind, name)
        if item is None:
            if not create_missing:
                raise NotFoundError(f"{kind} {name!r} not found")
            old = model()
            rev = None
        else:
            old = self._decode(model, item)
            rev = item.get(ATTR_REV)

        new = updater(old)

        if item is None:
            condition = {
                "ConditionExpression": "attribute_not_exists(#sk)",
                "ExpressionAttributeNames": {"#sk": ATTR_NAME},
            }
            next_rev = 0
        elif rev is None:
            # Row written without a revision counter
            condition = {
                "ConditionExpression": "attribute_exists(#sk) AND attribute_not_exists(#rev)",
                "ExpressionAttributeNames": {"#sk": ATTR_NAME, "#rev": ATTR_REV},
            }
            next_rev = 1
        else:
            condition = {
                "ConditionExpression": "#rev = :rev",
                "ExpressionAttributeNames": {"#rev": ATTR_REV},
                "ExpressionAttributeValues": {":rev": rev},
            }
            next_rev = int(rev) + 1
        try:
            self._table.put_item(Item=self._encode(kind, name, new, rev=next_rev), **condition)
        except ClientError as e:
            if _error_code(e) == _CONDITION_FAILED:
                logger.debug("concurrent write on %s %r, update aborted", kind, name)
            raise
        logger.debug("updated %s %r (rev %d)", kind, name, next_rev)

    # -------- Create --------
    def create_client(self, c: Client) -> None:
        self._create(KIND_CLIENT, c.id, c)

    def create_auth_code(self, c: AuthCode) -> None:
        self._create(KIND_AUTH_CODE, c.id, c)

    def create_refresh(self, r: RefreshToken) -> None:
        self._create(KIND_REFRESH_TOKEN, r.id, r)

    def create_auth_request(self, a: AuthRequest) -> None:
        self._create(KIND_AUTH_REQUEST, a.id, a)

    def create_password(self, p: Password) -> None:
        self._create(KIND_PASSWORD, p.email.lower(), p)

    def create_offline_sessions(self, s: OfflineSessions) -> None:
        self._create(KIND_OFFLINE_SESSIONS, _offline_sessions_id(s.user_id, s.conn_id), s)

    def create_connector(self, c: Connector) -> None:
        self._create(KIND_CONNECTOR, c.id, c)

    # -------- Get --------
    def get_client(self, id: str) -> Client:
        return self._get(KIND_CLIENT, id, Client)

    def get_auth_code(self, id: str) -> AuthCode:
        return self._get(KIND_AUTH_CODE, id, AuthCode)

    def get_refresh(self, id: str) -> RefreshToken:
        return self._get(KIND_REFRESH_TOKEN, id, RefreshToken)

    def get_auth_request(self, id: str) -> AuthRequest:
        return self._get(KIND_AUTH_REQUEST, id, AuthRequest)

    def get_password(self, email: str) -> Password:
        return self._get(KIND_PASSWORD, email.lower(), Password)

    def get_offline_sessions(self, user_id: str, conn_id: str) -> OfflineSessions:
        return self._get(
            KIND_OFFLINE_SESSIONS, _offline_sessions_id(user_id, conn_id), OfflineSessions
        )

    def get_connector(self, id: str) -> Connector:
        return self._get(KIND_CONNECTOR, id, Connector)

    def get_keys(self) -> Keys:
        return self._get(KIND_KEYS, KEYS_ID, Keys)

    # -------- List --------
    def list_clients(self) -> List[Client]:
        return self._list(KIND_CLIENT, Client)

    def list_auth_codes(self) -> List[AuthCode]:
        return self._list(KIND_AUTH_CODE, AuthCode)

    def list_auth_requests(self) -> List[AuthRequest]:
        return self._list(KIND_AUTH_REQUEST, AuthRequest)

    def list_refresh_tokens(self) -> List[RefreshToken]:
        return self._list(KIND_REFRESH_TOKEN, RefreshToken)

    def list_passwords(self) -> List[Password]:
        return self._list(KIND_PASSWORD, Password)

    def list_offline_sessions(self) -> List[OfflineSessions]:
        return self._list(KIND_OFFLINE_SESSIONS, OfflineSessions)

    def list_connectors(self) -> List[Connector]:
        return self._list(KIND_CONNECTOR, Connector)

    # -------- Delete --------
    def delete_client(self, id: str) -> None:
        self._delete(KIND_CLIENT, id)

    def delete_auth_code(self, id: str) -> None:
        self._delete(KIND_AUTH_CODE, id)

    def delete_refresh(self, id: str) -> None:
        self._delete(KIND_REFRESH_TOKEN, id)

    def delete_auth_request(self, id: str) -> None:
        self._delete(KIND_AUTH_REQUEST, id)

    def delete_password(self, email: str) -> None:
        self._delete(KIND_PASSWORD, email.lower())

    def delete_offline_sessions(self, user_id: str, conn_id: str) -> None:
        self._delete(KIND_OFFLINE_SESSIONS, _offline_sessions_id(user_id, conn_id))

    def delete_connector(self, id: str) -> None:
        self._delete(KIND_CONNECTOR, id)

    # -------- Update --------
    def update_client(self, id: str, updater: Callable[[Client], Client]) -> None:
        self._update(KIND_CLIENT, id, Client, updater)

    def update_auth_code(self, id: str, updater: Callable[[AuthCode], AuthCode]) -> None:
        self._update(KIND_AUTH_CODE, id, AuthCode, updater)

    def update_auth_request(
        self, id: str, updater: Callable[[AuthRequest], AuthRequest]
    ) -> None:
        self._update(KIND_AUTH_REQUEST, id, AuthRequest, updater)

    def update_refresh_token(
        self, id: str, updater: Callable[[RefreshToken], RefreshToken]
    ) -> None:
        self._update(KIND_REFRESH_TOKEN, id, RefreshToken, updater)

    def update_password(self, email: str, updater: Callable[[Password], Password]) -> None:
        self._update(KIND_PASSWORD, email.lower(), Password, updater)

    def update_offline_sessions(
        self,
        user_id: str,
        conn_id: str,
        updater: Callable[[OfflineSessions], OfflineSessions],
    ) -> None:
        self._update(
            KIND_OFFLINE_SESSIONS,
            _offline_sessions_id(user_id, conn_id),
            OfflineSessions,
            updater,
        )

    def update_connector(self, id: str, updater: Callable[[Connector], Connector]) -> None:
        self._update(KIND_CONNECTOR, id, Connector, updater)

    def update_keys(self, updater: Callable[[Keys], Keys]) -> None:
        self._update(KIND_KEYS, KEYS_ID, Keys, updater, create_missing=True)

    # -------- Maintenance --------
    def garbage_collect(self, now: datetime) -> GCResult:
        """Delete expired auth codes and auth requests.

        Both kinds are listed in full and every row whose expiry is strictly
        before `now` is removed through the table's batch writer. Rows are
        deleted by their stored key, which need not match the entity's `id`
        once an updater has changed it.
        """
        self._check_open()
        now = _as_utc(now)
        result = GCResult()
        doomed: List[Dict[str, str]] = []

        for item in self._query_items(KIND_AUTH_CODE):
            if _expired(self._decode(AuthCode, item).expiry, now):
                doomed.append(self._key(KIND_AUTH_CODE, item[ATTR_NAME]))
                result.auth_codes += 1

        for item in self._query_items(KIND_AUTH_REQUEST):
            if _expired(self._decode(AuthRequest, item).expiry, now):
                doomed.append(self._key(KIND_AUTH_REQUEST, item[ATTR_NAME]))
                result.auth_requests += 1

        if doomed:
            with self._table.batch_writer() as batch:
                for key in doomed:
                    batch.delete_item(Key=key)

        if not result.is_empty():
            logger.info(
                "garbage collection removed %d auth codes and %d auth requests",
                result.auth_codes,
                result.auth_requests,
            )
        return result


def create_table(dynamodb: Any, table_name: str) -> Any:
    """Create a table with the key schema `DynamoStorage` expects and wait for it.

    `dynamodb` is a boto3 DynamoDB service resource. Intended for DynamoDB
    Local and test environments; production tables are usually provisioned
    out of band.
    """
    table = dynamodb.create_table(
        TableName=table_name,
        KeySchema=[
            {"AttributeName": ATTR_KIND, "KeyType": "HASH"},
            {"AttributeName": ATTR_NAME, "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": ATTR_KIND, "AttributeType": "S"},
            {"AttributeName": ATTR_NAME, "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    table.wait_until_exists()
    logger.info("created DynamoDB table %r", table_name)
    return table
