from __future__ import annotations

import abc
from datetime import datetime
from typing import Callable, List

from .models import (
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


class Storage(abc.ABC):
    """
    Storage contract consumed by the identity provider.

    Semantics every backend must honor
    - `create_*` raises `AlreadyExistsError` if the key is already present.
    - `get_*`, `delete_*` and `update_*` raise `NotFoundError` if the key is
      absent. `update_keys` is the exception: the keys record is a singleton
      and an update on an empty store starts from `Keys()`.
    - `update_*` calls `updater(old)` and stores its return value. If the
      updater raises, the exception propagates and nothing is written.
    - Passwords are keyed by the lowercased email.
    """

    def __enter__(self) -> "Storage":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @abc.abstractmethod
    def close(self) -> None: ...

    # -------- Create --------
    @abc.abstractmethod
    def create_client(self, c: Client) -> None: ...

    @abc.abstractmethod
    def create_auth_code(self, c: AuthCode) -> None: ...

    @abc.abstractmethod
    def create_refresh(self, r: RefreshToken) -> None: ...

    @abc.abstractmethod
    def create_auth_request(self, a: AuthRequest) -> None: ...

    @abc.abstractmethod
    def create_password(self, p: Password) -> None: ...

    @abc.abstractmethod
    def create_offline_sessions(self, s: OfflineSessions) -> None: ...

    @abc.abstractmethod
    def create_connector(self, c: Connector) -> None: ...

    # -------- Get --------
    @abc.abstractmethod
    def get_client(self, id: str) -> Client: ...

    @abc.abstractmethod
    def get_auth_code(self, id: str) -> AuthCode: ...

    @abc.abstractmethod
    def get_refresh(self, id: str) -> RefreshToken: ...

    @abc.abstractmethod
    def get_auth_request(self, id: str) -> AuthRequest: ...

    @abc.abstractmethod
    def get_password(self, email: str) -> Password: ...

    @abc.abstractmethod
    def get_offline_sessions(self, user_id: str, conn_id: str) -> OfflineSessions: ...

    @abc.abstractmethod
    def get_connector(self, id: str) -> Connector: ...

    @abc.abstractmethod
    def get_keys(self) -> Keys: ...

    # -------- List --------
    @abc.abstractmethod
    def list_clients(self) -> List[Client]: ...

    @abc.abstractmethod
    def list_auth_codes(self) -> List[AuthCode]: ...

    @abc.abstractmethod
    def list_auth_requests(self) -> List[AuthRequest]: ...

    @abc.abstractmethod
    def list_refresh_tokens(self) -> List[RefreshToken]: ...

    @abc.abstractmethod
    def list_passwords(self) -> List[Password]: ...

    @abc.abstractmethod
    def list_offline_sessions(self) -> List[OfflineSessions]: ...

    @abc.abstractmethod
    def list_connectors(self) -> List[Connector]: ...

    # -------- Delete --------
    @abc.abstractmethod
    def delete_client(self, id: str) -> None: ...

    @abc.abstractmethod
    def delete_auth_code(self, id: str) -> None: ...

    @abc.abstractmethod
    def delete_refresh(self, id: str) -> None: ...

    @abc.abstractmethod
    def delete_auth_request(self, id: str) -> None: ...

    @abc.abstractmethod
    def delete_password(self, email: str) -> None: ...

    @abc.abstractmethod
    def delete_offline_sessions(self, user_id: str, conn_id: str) -> None: ...

    @abc.abstractmethod
    def delete_connector(self, id: str) -> None: ...

    # -------- Update --------
    @abc.abstractmethod
    def update_client(self, id: str, updater: Callable[[Client], Client]) -> None: ...

    @abc.abstractmethod
    def update_auth_code(self, id: str, updater: Callable[[AuthCode], AuthCode]) -> None: ...

    @abc.abstractmethod
    def update_auth_request(
        self, id: str, updater: Callable[[AuthRequest], AuthRequest]
    ) -> None: ...

    @abc.abstractmethod
    def update_refresh_token(
        self, id: str, updater: Callable[[RefreshToken], RefreshToken]
    ) -> None: ...

    @abc.abstractmethod
    def update_password(self, email: str, updater: Callable[[Password], Password]) -> None: ...

    @abc.abstractmethod
    def update_offline_sessions(
        self,
        user_id: str,
        conn_id: str,
        updater: Callable[[OfflineSessions], OfflineSessions],
    ) -> None: ...

    @abc.abstractmethod
    def update_connector(self, id: str, updater: Callable[[Connector], Connector]) -> None: ...

    @abc.abstractmethod
    def update_keys(self, updater: Callable[[Keys], Keys]) -> None: ...

    # -------- Maintenance --------
    @abc.abstractmethod
    def garbage_collect(self, now: datetime) -> GCResult:
        """Delete auth codes and auth requests whose expiry is before `now`."""
