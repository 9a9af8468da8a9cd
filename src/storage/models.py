from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


JSONWebKey = Dict[str, Any]


class _Entity(BaseModel):
    # Raw bytes (connector data, password hashes) travel as base64 inside JSON
    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")


class Claims(_Entity):
    """Identity claims asserted by a connector about the end user."""

    user_id: str = ""
    username: str = ""
    preferred_username: str = ""
    email: str = ""
    email_verified: bool = False
    groups: List[str] = Field(default_factory=list)


class PKCE(_Entity):
    code_challenge: str = ""
    code_challenge_method: str = ""


class Client(_Entity):
    """
    An OAuth2 client registered with the identity provider.

    `trusted_peers` lists client IDs allowed to mint tokens on behalf of this
    client; `public` clients have no usable secret.
    """

    id: str = ""
    secret: str = ""
    redirect_uris: List[str] = Field(default_factory=list)
    trusted_peers: List[str] = Field(default_factory=list)
    public: bool = False
    name: str = ""
    logo_url: str = ""


class AuthRequest(_Entity):
    """
    An in-flight authorization request, alive between the initial redirect
    and the user finishing login with a connector.
    """

    id: str = ""
    client_id: str = ""
    response_types: List[str] = Field(default_factory=list)
    scopes: List[str] = Field(default_factory=list)
    redirect_uri: str = ""
    nonce: str = ""
    state: str = ""
    force_approval_prompt: bool = False
    expiry: Optional[datetime] = None
    logged_in: bool = False
    claims: Claims = Field(default_factory=Claims)
    connector_id: str = ""
    connector_data: Optional[bytes] = None
    pkce: PKCE = Field(default_factory=PKCE)
    hmac_key: Optional[bytes] = None


class AuthCode(_Entity):
    """A short-lived authorization code issued once login has completed."""

    id: str = ""
    client_id: str = ""
    redirect_uri: str = ""
    nonce: str = ""
    scopes: List[str] = Field(default_factory=list)
    connector_id: str = ""
    connector_data: Optional[bytes] = None
    claims: Claims = Field(default_factory=Claims)
    expiry: Optional[datetime] = None
    pkce: PKCE = Field(default_factory=PKCE)


class RefreshToken(_Entity):
    """
    A refresh token. `token` is the current secret, `obsolete_token` the
    previous one, kept so a client retrying a rotation is not locked out.
    """

    id: str = ""
    token: str = ""
    obsolete_token: str = ""
    created_at: Optional[datetime] = None
    last_used: Optional[datetime] = None
    client_id: str = ""
    connector_id: str = ""
    connector_data: Optional[bytes] = None
    claims: Claims = Field(default_factory=Claims)
    scopes: List[str] = Field(default_factory=list)
    nonce: str = ""


class RefreshTokenRef(_Entity):
    """Pointer to a refresh token, as listed in a user's offline sessions."""

    id: str = ""
    client_id: str = ""
    created_at: Optional[datetime] = None
    last_used: Optional[datetime] = None


class Password(_Entity):
    """A local password login. Stored under the lowercased email."""

    email: str = ""
    hash: bytes = b""
    username: str = ""
    user_id: str = ""


class Connector(_Entity):
    """An upstream identity connector; `config` is its opaque JSON config."""

    id: str = ""
    type: str = ""
    name: str = ""
    resource_version: str = ""
    config: Optional[bytes] = None


class OfflineSessions(_Entity):
    """
    Refresh tokens held by one user through one connector, keyed by client ID.

    The `refresh` map has client-chosen keys, so it is stored as an opaque
    blob rather than as native attributes.
    """

    user_id: str = ""
    conn_id: str = ""
    refresh: Dict[str, RefreshTokenRef] = Field(default_factory=dict)
    connector_data: Optional[bytes] = None


class VerificationKey(_Entity):
    public_key: Optional[JSONWebKey] = None
    expiry: Optional[datetime] = None


class Keys(_Entity):
    """
    Signing key material. A singleton: there is exactly one Keys record.

    Keys are JSON Web Keys kept as JSON objects, whose shape depends on the
    key type, hence blob storage.
    """

    signing_key: Optional[JSONWebKey] = None
    signing_key_pub: Optional[JSONWebKey] = None
    verification_keys: List[VerificationKey] = Field(default_factory=list)
    next_rotation: Optional[datetime] = None


class GCResult(BaseModel):
    """Counts of expired objects removed by a garbage collection sweep."""

    auth_requests: int = 0
    auth_codes: int = 0

    def is_empty(self) -> bool:
        return self.auth_requests == 0 and self.auth_codes == 0
