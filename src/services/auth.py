"""Session check for the upload entry point."""

import hmac
import logging
from typing import Optional

from services.errors import AuthError

logger = logging.getLogger(__name__)


class TokenAuthenticator:
    """Resolves bearer tokens to user IDs from a static ``token -> user_id`` map."""

    def __init__(self, tokens: dict[str, str]):
        self._tokens = dict(tokens)

    async def authenticate(self, token: Optional[str]) -> str:
        """Return the user ID owning ``token``.

        Raises:
            AuthError: If the token is missing or unknown
        """
        if not token:
            raise AuthError("Not authenticated")

        for known_token, user_id in self._tokens.items():
            if hmac.compare_digest(known_token, token):
                return user_id

        logger.warning("Rejected upload with unknown session token")
        raise AuthError("Invalid session token")
