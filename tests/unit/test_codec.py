from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from boto3.dynamodb.types import Binary
from cryptography.fernet import Fernet
from pydantic import ValidationError

from dynamo.codec import EntityCodec, from_attributes, to_attributes
from storage.models import AuthCode, Client, Keys, OfflineSessions, RefreshTokenRef, VerificationKey


TS = datetime(2025, 9, 5, 12, 30, 15, 123456, tzinfo=timezone.utc)


def _keys() -> Keys:
    return Keys(
        signing_key={"kty": "RSA", "kid": "abc", "n": "modulus", "e": "AQAB", "d": "secret"},
        signing_key_pub={"kty": "RSA", "kid": "abc", "n": "modulus", "e": "AQAB"},
        verification_keys=[
            VerificationKey(public_key={"kty": "RSA", "kid": "old", "n": "m2", "e": "AQAB"}, expiry=TS),
        ],
        next_rotation=TS,
    )


def _sessions() -> OfflineSessions:
    return OfflineSessions(
        user_id="u1",
        conn_id="ldap",
        refresh={
            "client-a": RefreshTokenRef(id="r1", client_id="client-a", created_at=TS, last_used=TS),
            "client-b": RefreshTokenRef(id="r2", client_id="client-b", created_at=TS),
        },
        connector_data=b"\x00\x01\xfe\xff",
    )


@pytest.mark.parametrize("fernet_key", [None, Fernet.generate_key()])
def test_keys_and_sessions_roundtrip(fernet_key):
    codec = EntityCodec(fernet_key)
    assert codec.decode(Keys, codec.encode(_keys())) == _keys()
    assert codec.decode(OfflineSessions, codec.encode(_sessions())) == _sessions()


def test_empty_values_roundtrip():
    codec = EntityCodec()
    assert codec.decode(Keys, codec.encode(Keys())) == Keys()
    assert codec.decode(OfflineSessions, codec.encode(OfflineSessions())) == OfflineSessions()


def test_plain_blob_is_json():
    blob = EntityCodec().encode(_sessions())
    assert blob.startswith(b"{")
    assert b'"user_id":"u1"' in blob


def test_string_fernet_key_accepted():
    key = Fernet.generate_key().decode("ascii")
    codec = EntityCodec(key)
    assert codec.encrypted
    assert codec.decode(Keys, codec.encode(_keys())) == _keys()


def test_decode_with_wrong_key_raises_value_error():
    blob = EntityCodec(Fernet.generate_key()).encode(_keys())
    with pytest.raises(ValueError):
        EntityCodec(Fernet.generate_key()).decode(Keys, blob)


def test_decode_malformed_json_raises_validation_error():
    with pytest.raises(ValidationError):
        EntityCodec().decode(Keys, b"not json")


def test_only_blob_entities_are_encoded():
    codec = EntityCodec()
    with pytest.raises(TypeError):
        codec.encode(Client(id="c"))
    with pytest.raises(TypeError):
        codec.decode(Client, b"{}")


def test_to_attributes_converts_datetimes():
    attrs = to_attributes(AuthCode(id="c", expiry=TS, connector_data=b"raw"))
    assert attrs["expiry"] == "2025-09-05T12:30:15.123456+00:00"
    assert attrs["connector_data"] == b"raw"
    assert attrs["claims"]["groups"] == []
    assert attrs["pkce"] == {"code_challenge": "", "code_challenge_method": ""}


def test_from_attributes_normalizes_boto3_types():
    item = {
        "blob": Binary(b"\x01\x02"),
        "rev": Decimal("3"),
        "ratio": Decimal("0.5"),
        "tags": {"a"},
        "nested": {"n": Decimal("7"), "l": [Binary(b"x")]},
    }
    assert from_attributes(item) == {
        "blob": b"\x01\x02",
        "rev": 3,
        "ratio": 0.5,
        "tags": ["a"],
        "nested": {"n": 7, "l": [b"x"]},
    }
