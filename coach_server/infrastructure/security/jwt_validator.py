"""
Bearer token validation.

Two modes are supported: Firebase ID tokens checked against Google's public
JWKS, and HS256 tokens signed with a shared secret for development and tests.
"""

from typing import Dict, Optional, Any
import asyncio
import jwt
import structlog

from domain.errors import AuthenticationError

logger = structlog.get_logger(__name__)

FIREBASE_JWKS_URL = (
    "https://www.googleapis.com/service_accounts/v1/jwk/"
    "securetoken@system.gserviceaccount.com"
)


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Return the token part of an ``Authorization: Bearer`` header"""

    if not authorization:
        raise AuthenticationError("missing authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("invalid authorization header")
    return token.strip()


class JWTValidator:
    """Validates bearer tokens and returns the caller's claims"""

    def __init__(
        self,
        mode: str = "shared_secret",
        project_id: Optional[str] = None,
        shared_secret: Optional[str] = None,
        jwks_url: str = FIREBASE_JWKS_URL
    ):
        if mode == "firebase" and not project_id:
            raise ValueError("firebase mode requires a project id")
        if mode == "shared_secret" and not shared_secret:
            raise ValueError("shared_secret mode requires a secret")

        self.mode = mode
        self.project_id = project_id
        self.shared_secret = shared_secret
        self._jwks_client = jwt.PyJWKClient(jwks_url) if mode == "firebase" else None

    async def verify_token(self, token: Optional[str]) -> Dict[str, Any]:
        """
        Verify a token and return its claims.

        Raises:
            AuthenticationError: If the token is missing, malformed, expired
                or signed by an unknown key
        """

        if not token:
            raise AuthenticationError("no token provided")

        try:
            if self.mode == "firebase":
                claims = await asyncio.to_thread(self._decode_firebase, token)
            else:
                claims = jwt.decode(
                    token,
                    self.shared_secret,
                    algorithms=["HS256"],
                    options={"require": ["sub"]}
                )
        except jwt.PyJWTError as e:
            logger.info("Token rejected", reason=str(e))
            raise AuthenticationError("invalid token") from e

        if not claims.get("sub"):
            raise AuthenticationError("token has no subject")
        return claims

    async def get_uid(self, authorization: Optional[str]) -> str:
        claims = await self.verify_token(extract_bearer_token(authorization))
        return claims["sub"]

    def _decode_firebase(self, token: str) -> Dict[str, Any]:
        signing_key = self._jwks_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=self.project_id,
            issuer=f"https://securetoken.google.com/{self.project_id}",
            options={"require": ["exp", "iat", "sub"]}
        )


def issue_dev_token(uid: str, secret: str, extra_claims: Optional[Dict[str, Any]] = None) -> str:
    """Sign a shared-secret token for local development and tests"""

    claims = {"sub": uid}
    claims.update(extra_claims or {})
    return jwt.encode(claims, secret, algorithm="HS256")
