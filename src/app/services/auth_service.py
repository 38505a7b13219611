from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from supabase import Client
import logging

# Core imports
from core.interfaces import IAuthService, IBillingStore
from core.base_service import BaseService
from core.responses import AuthenticationException, AuthorizationException

logger = logging.getLogger(__name__)


class AuthService(BaseService, IAuthService):
    """Supabase token verification for the admin billing endpoints"""

    def __init__(self, supabase_client: Client, db_helper: IBillingStore):
        super().__init__(db_helper)
        self.supabase = supabase_client

    async def verify_auth(self, credentials: HTTPAuthorizationCredentials):
        """Verify the bearer token and return the Supabase user"""

        try:
            return await self._verify_token_internal(credentials)
        except AuthenticationException:
            raise HTTPException(status_code=401, detail="Invalid token")
        except Exception as e:
            self.logger.error("Authentication failed: %s", e)
            raise HTTPException(status_code=401, detail="Authentication failed")

    async def verify_admin(self, credentials: HTTPAuthorizationCredentials):
        """Verify the token and require an admin_users row for the caller"""
        user = await self.verify_auth(credentials)

        if not await self.db_helper.is_admin_user(user.id):
            self.logger.warning("Admin access denied for user %s", user.id)
            raise AuthorizationException("Admin access required")

        return user

    async def _verify_token_internal(self, credentials: HTTPAuthorizationCredentials):
        try:
            response = self.supabase.auth.get_user(credentials.credentials)

            if response is None or response.user is None:
                raise AuthenticationException("Invalid token")

            return response.user

        except AuthenticationException:
            raise
        except Exception as e:
            self.logger.error("Token verification error: %s", e)
            raise AuthenticationException("Authentication error")
