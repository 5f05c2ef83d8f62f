import logging
from typing import Callable, Optional
from uuid import UUID

from .auth import SessionProvider, require_user
from .errors import InvalidStateTransitionError, PermissionDeniedError
from .models import Account, AccountType
from .storage import Storage

logger = logging.getLogger(__name__)

# (target mode is demo, account is influencer) -> stored type
_MODE_TYPES = {
    (False, False): AccountType.REAL,
    (True, False): AccountType.DEMO,
    (False, True): AccountType.INFLUENCER,
    (True, True): AccountType.DEMO_INFLUENCER,
}


class AccountService:
    def __init__(
        self,
        storage: Storage,
        session: SessionProvider,
        on_created: Optional[list[Callable[[Account], None]]] = None,
    ):
        self.storage = storage
        self.session = session
        self.on_created = list(on_created or [])

    def get_or_create(self, user_id: UUID) -> Account:
        account = self.storage.get_account(user_id)
        if account is None:
            account = self.storage.save_account(Account(user_id=user_id))
            logger.info("Created real account for user %s", user_id)
            for callback in self.on_created:
                callback(account)
        return account

    def current_account(self) -> Account:
        return self.get_or_create(require_user(self.session))

    def current_mode(self) -> tuple[UUID, bool]:
        account = self.current_account()
        return account.user_id, account.is_demo

    def require_admin(self) -> Account:
        account = self.current_account()
        if not account.is_admin:
            raise PermissionDeniedError("Administrator privileges required")
        return account

    def switch_account_type(self, new_type: AccountType) -> Account:
        """Switch the session user between real and demo funds.

        Only the stored mode changes; no transaction is moved or copied.
        Influencers keep their status on both sides.
        """
        account = self.current_account()
        if new_type.is_influencer and not account.account_type.is_influencer:
            raise InvalidStateTransitionError("Influencer status is earned through referrals")

        target = _MODE_TYPES[(new_type.is_demo, account.account_type.is_influencer)]
        if target == account.account_type:
            return account

        previous = account.account_type
        account = account.model_copy(update={"account_type": target})
        self.storage.save_account(account)
        logger.info("User %s switched account type %s -> %s", account.user_id, previous.value, target.value)
        return account

    def promote_to_influencer(self, user_id: UUID) -> Optional[Account]:
        """Upgrade ``user_id`` to its influencer variant; None if already one."""
        account = self.get_or_create(user_id)
        if account.account_type.is_influencer:
            return None
        target = _MODE_TYPES[(account.is_demo, True)]
        account = account.model_copy(update={"account_type": target})
        self.storage.save_account(account)
        logger.info("User %s promoted to %s", user_id, target.value)
        return account
