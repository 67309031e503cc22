import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import jwt

TOKEN_SECRET = "secret"
TOKEN_ALGORITHM = "HS256"
TOKEN_EXPIRY = timedelta(hours=12)

# requested scopes naming this resource type get the resource token
RESOURCE_TYPE_MARKER = "container"

_CLIENT = "abacus-cf-renewer"
TOKEN_ID = "254abca5-1c25-40c5-99d7-2cc641791517"


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """
    TokenClaims holds the identity part of a token, everything
    except the timestamps which are stamped at signing time.
    """

    sub: "str"
    authorities: "tuple[str, ...]"
    scope: "tuple[str, ...]"
    client_id: "str"
    aud: "tuple[str, ...]"
    jti: "str" = TOKEN_ID
    grant_type: "str" = "client_credentials"
    rev_sig: "str" = "2cf89595"
    iss: "str" = "https://localhost:1234/oauth/token"
    zid: "str" = "uaa"

    def to_payload(self) -> "dict[str, Any]":
        return {
            "jti": self.jti,
            "sub": self.sub,
            "authorities": list(self.authorities),
            "scope": list(self.scope),
            "client_id": self.client_id,
            "cid": self.client_id,
            "azp": self.client_id,
            "grant_type": self.grant_type,
            "rev_sig": self.rev_sig,
            "iss": self.iss,
            "zid": self.zid,
            "aud": list(self.aud),
        }


RESOURCE_CLAIMS = TokenClaims(
    sub=_CLIENT,
    authorities=(
        "abacus.usage.linux-container.write",
        "abacus.usage.linux-container.read",
    ),
    scope=(
        "abacus.usage.linux-container.read",
        "abacus.usage.linux-container.write",
    ),
    client_id=_CLIENT,
    aud=(_CLIENT, "abacus.usage.linux-container"),
)

SYSTEM_CLAIMS = TokenClaims(
    sub=_CLIENT,
    authorities=("abacus.usage.write", "abacus.usage.read"),
    scope=("abacus.usage.write", "abacus.usage.read"),
    client_id=_CLIENT,
    aud=(_CLIENT, "abacus.usage"),
)


def sign(
    claims: "TokenClaims",
    secret: "str" = TOKEN_SECRET,
    algorithm: "str" = TOKEN_ALGORITHM,
    expires_in: "timedelta" = TOKEN_EXPIRY,
    now: "int | None" = None,
) -> "str":
    """
    signs the claims, stamping iat with now and exp with
    now + expires_in.
    """
    issued_at = int(time.time()) if now is None else now
    payload = claims.to_payload()
    payload["iat"] = issued_at
    payload["exp"] = issued_at + int(expires_in.total_seconds())
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode(
    token: "str",
    secret: "str" = TOKEN_SECRET,
    algorithm: "str" = TOKEN_ALGORITHM,
) -> "dict[str, Any]":
    """
    verifies the signature and expiry of a token and returns its payload.
    Audience is not checked, the services do that themselves.
    """
    return jwt.decode(
        token,
        secret,
        algorithms=[algorithm],
        options={"verify_aud": False},
    )


SIGNED_RESOURCE_TOKEN = sign(RESOURCE_CLAIMS)
SIGNED_SYSTEM_TOKEN = sign(SYSTEM_CLAIMS)


def select_token(scope: "str | None") -> "str":
    """
    picks the token to hand out for a requested scope: any scope
    naming the resource type gets the resource token.
    """
    if scope and RESOURCE_TYPE_MARKER in scope:
        return SIGNED_RESOURCE_TOKEN
    return SIGNED_SYSTEM_TOKEN
