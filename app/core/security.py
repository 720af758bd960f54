import hmac
import logging

from app.core.errors import AuthenticationError, UpstreamDataError
from app.domain.models import PassIdentity
from app.repositories.wallet_pass import WalletPassRepository

logger = logging.getLogger(__name__)

APPLE_PASS_SCHEME = "ApplePass "


def extract_pass_token(authorization: str | None) -> str | None:
    """Extract auth token from Authorization header (Apple Wallet passes)."""
    if not authorization:
        return None
    if authorization.startswith(APPLE_PASS_SCHEME):
        return authorization[len(APPLE_PASS_SCHEME):].strip() or None
    return None


def tokens_match(presented: str, stored: str | None) -> bool:
    if not stored:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), stored.encode("utf-8"))


def authenticate_pass(serial_number: str, authorization: str | None) -> PassIdentity:
    """Verify the ApplePass token against the stored pass identity.

    Fails closed: a missing header, an unknown serial and a store error
    all count as unauthenticated.

    Raises:
        AuthenticationError: If the token does not exactly match.
    """
    token = extract_pass_token(authorization)
    if not token:
        raise AuthenticationError("Authorization required")

    try:
        identity = WalletPassRepository.get_by_serial(serial_number)
    except UpstreamDataError as e:
        logger.warning(f"Pass identity lookup failed for {serial_number[:8]}...: {e}")
        identity = None

    if identity is None or not tokens_match(token, identity.authentication_token):
        raise AuthenticationError("Invalid authentication")

    return identity
