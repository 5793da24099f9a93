import logging
from typing import Optional

from .exceptions import AuthorizationError
from .models import Reviewer
from .storage import InMemoryStorage


logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class IdentityService:
    """Resolves bearer tokens to user ids and checks the role-assignment store.

    Tokens are issued by the external identity provider; ``auth_tokens`` holds
    the ones it has handed out.
    """

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def resolve_token(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        row = self.storage.get("auth_tokens", token)
        return row["user_id"] if row else None

    def authenticate(self, authorization: Optional[str]) -> str:
        if not authorization:
            raise AuthorizationError("Missing authorization header")
        token = authorization.replace("Bearer ", "", 1).strip()
        user_id = self.resolve_token(token)
        if not user_id:
            raise AuthorizationError("Unauthorized")
        return user_id

    def is_admin(self, user_id: str) -> bool:
        return bool(self.storage.select("user_roles", where={"user_id": user_id, "role": ADMIN_ROLE}, limit=1))

    def reviewer_for(self, user_id: str) -> Reviewer:
        return Reviewer(user_id=user_id, is_admin=self.is_admin(user_id))

    def issue_token(self, user_id: str, token: str) -> None:
        self.storage.insert("auth_tokens", {"id": token, "user_id": user_id})

    def grant_admin(self, user_id: str) -> None:
        if not self.is_admin(user_id):
            self.storage.insert("user_roles", {"user_id": user_id, "role": ADMIN_ROLE})
            logger.info(f"Granted admin role to {user_id}")
