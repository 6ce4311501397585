"""
Identity provider token verification.

Principals are authenticated by an external identity provider which issues
signed JWTs. This module verifies those tokens and turns the claims into a
Principal carrying the stable provider uid. Roles are never read from the
token; they are looked up separately by the role resolver.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from waterline.core.config import get_settings
from waterline.core.logging import get_logger

logger = get_logger(__name__)

ANONYMOUS_PROVIDER = "anonymous"


class IdentityError(Exception):
    """Raised when an identity token cannot be verified."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


@dataclass(frozen=True)
class Principal:
    """An authenticated identity issued by the identity provider."""

    uid: str
    display_name: Optional[str] = None
    is_anonymous: bool = False


def _sign_in_provider(claims: Dict[str, Any]) -> Optional[str]:
    provider = claims.get("sign_in_provider")
    if provider is None and isinstance(claims.get("firebase"), dict):
        provider = claims["firebase"].get("sign_in_provider")
    return provider


def verify_identity_token(token: str) -> Principal:
    """
    Decode and validate an identity provider token.

    Args:
        token: Signed JWT issued by the identity provider

    Returns:
        Principal built from the token's subject and profile claims

    Raises:
        IdentityError: If the token is empty, expired, malformed or has no subject
    """
    if not token:
        logger.warning("Attempted to verify empty identity token")
        raise IdentityError("Identity token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()
    decode_kwargs: Dict[str, Any] = {
        "algorithms": [settings.identity_jwt_algorithm],
        "options": {"verify_aud": settings.identity_audience is not None},
    }
    if settings.identity_audience is not None:
        decode_kwargs["audience"] = settings.identity_audience
    if settings.identity_issuer is not None:
        decode_kwargs["issuer"] = settings.identity_issuer

    try:
        claims = jwt.decode(token, settings.identity_jwt_secret, **decode_kwargs)
    except ExpiredSignatureError as e:
        logger.warning("Identity token has expired", error=str(e))
        raise IdentityError("Identity token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning(
            "Invalid identity token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise IdentityError(
            "Invalid identity token",
            code="TOKEN_INVALID",
            original_error=str(e),
        ) from e

    uid = claims.get("sub") or claims.get("user_id")
    if not uid:
        logger.warning("Identity token missing subject claim")
        raise IdentityError("Identity token has no subject", code="TOKEN_NO_SUBJECT")

    principal = Principal(
        uid=str(uid),
        display_name=claims.get("name"),
        is_anonymous=_sign_in_provider(claims) == ANONYMOUS_PROVIDER,
    )

    logger.debug(
        "Identity token verified",
        principal_id=principal.uid,
        is_anonymous=principal.is_anonymous,
    )

    return principal
