from datetime import timedelta

import jwt
import pytest

from meterprobe.tokens import (
    RESOURCE_CLAIMS,
    SIGNED_RESOURCE_TOKEN,
    SIGNED_SYSTEM_TOKEN,
    SYSTEM_CLAIMS,
    decode,
    select_token,
    sign,
)


class TestSignedTokens:
    def test_resource_token_claims(self) -> "None":
        payload = decode(SIGNED_RESOURCE_TOKEN)
        assert payload["authorities"] == [
            "abacus.usage.linux-container.write",
            "abacus.usage.linux-container.read",
        ]
        assert "abacus.usage.linux-container" in payload["aud"]
        assert payload["client_id"] == "abacus-cf-renewer"

    def test_system_token_claims(self) -> "None":
        payload = decode(SIGNED_SYSTEM_TOKEN)
        assert sorted(payload["scope"]) == ["abacus.usage.read", "abacus.usage.write"]

    def test_valid_for_twelve_hours(self) -> "None":
        payload = decode(SIGNED_SYSTEM_TOKEN)
        assert payload["exp"] - payload["iat"] == 12 * 3600

    def test_expired_token_rejected(self) -> "None":
        token = sign(SYSTEM_CLAIMS, expires_in=timedelta(seconds=10), now=1000)
        with pytest.raises(jwt.ExpiredSignatureError):
            decode(token)

    def test_wrong_secret_rejected(self) -> "None":
        token = sign(RESOURCE_CLAIMS, secret="other")
        with pytest.raises(jwt.InvalidSignatureError):
            decode(token)


class TestSelectToken:
    def test_resource_scope_selects_resource_token(self) -> "None":
        scope = "abacus.usage.linux-container.read abacus.usage.linux-container.write"
        assert select_token(scope) == SIGNED_RESOURCE_TOKEN

    def test_other_scope_selects_system_token(self) -> "None":
        assert select_token("abacus.usage.read abacus.usage.write") == SIGNED_SYSTEM_TOKEN

    def test_missing_scope_selects_system_token(self) -> "None":
        assert select_token(None) == SIGNED_SYSTEM_TOKEN
        assert select_token("") == SIGNED_SYSTEM_TOKEN

    def test_marker_anywhere_selects_resource_token(self) -> "None":
        assert select_token("container.read") == SIGNED_RESOURCE_TOKEN
        assert select_token("read:container") == SIGNED_RESOURCE_TOKEN
