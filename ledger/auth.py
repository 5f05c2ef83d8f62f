from typing import Optional, Protocol
from uuid import UUID

from .errors import AuthenticationRequiredError


class SessionProvider(Protocol):
    def get_current_user_id(self) -> Optional[UUID]: ...


class StaticSession:
    """Session bound to a fixed user id (or to nobody)."""

    def __init__(self, user_id: Optional[UUID] = None):
        self.user_id = user_id

    def get_current_user_id(self) -> Optional[UUID]:
        return self.user_id


def require_user(session: SessionProvider) -> UUID:
    user_id = session.get_current_user_id()
    if user_id is None:
        raise AuthenticationRequiredError("You must be signed in to do this")
    return user_id
