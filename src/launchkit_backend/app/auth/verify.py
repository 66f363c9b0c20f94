# src/launchkit_backend/app/auth/verify.py
from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List, Optional

import jwt
from jwt import PyJWKClient
from fastapi import HTTPException, status

from launchkit_backend.app.core.config import get_settings
from launchkit_backend.app.core.trace import auth_trace


class Auth0Verifier:
    """
    Verifies Auth0-issued RS256 access tokens against the tenant's JWKS.
    """
    def __init__(self, iss: str, jwks_uri: str, audiences: List[str] | str, algs=("RS256",), jwk_client=None):
        self.iss = iss
        self._jwk = jwk_client or PyJWKClient(jwks_uri)
        self.algs = list(algs)
        self.audiences = audiences if isinstance(audiences, list) else [audiences]

    def verify(self, token: str) -> Dict[str, Any]:
        try:
            hdr = jwt.get_unverified_header(token)
            if hdr.get("alg") not in self.algs:
                raise HTTPException(status_code=401, detail=f"unexpected alg: {hdr.get('alg')}")
            # Get correct signing key based on token header (kid)
            key = self._jwk.get_signing_key_from_jwt(token).key
            claims = jwt.decode(
                token,
                key=key,
                algorithms=self.algs,
                audience=self.audiences,
                issuer=self.iss,
                options={"require": ["exp", "iss", "aud", "sub"]},
                leeway=120,
            )
        except jwt.ExpiredSignatureError:
            auth_trace("auth0.verify.expired")
            raise HTTPException(status_code=401, detail="invalid token: exp (expired)")
        except jwt.InvalidAudienceError:
            auth_trace("auth0.verify.aud_mismatch")
            raise HTTPException(status_code=401, detail="invalid token: audience mismatch")
        except jwt.InvalidIssuerError:
            auth_trace("auth0.verify.iss_mismatch")
            raise HTTPException(status_code=401, detail=f"invalid token: issuer mismatch (want={self.iss})")
        except jwt.PyJWTError as ex:
            auth_trace("auth0.verify.jwt_error", err=str(ex))
            raise HTTPException(status_code=401, detail=f"invalid token: {ex}")

        auth_trace("auth0.verify.ok", sub=claims.get("sub"), exp=claims.get("exp"))
        return claims


@lru_cache(maxsize=1)
def get_verifier() -> Auth0Verifier:
    """Build the verifier from settings (cached, so the JWKS cache survives across requests)."""
    s = get_settings()
    return Auth0Verifier(iss=s.auth0_issuer, jwks_uri=s.auth0_jwks_uri, audiences=[s.auth0_audience])


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    return token

