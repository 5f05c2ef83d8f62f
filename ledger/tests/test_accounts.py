"""
Tests for account modes, sessions and error messages.
"""

import pytest
from decimal import Decimal
from uuid import UUID

from ledger.accounts import AccountService
from ledger.auth import StaticSession, require_user
from ledger.config import Settings
from ledger.errors import (
    AlreadyClaimedError,
    AuthenticationRequiredError,
    BackendUnavailableError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    user_message,
)
from ledger.models import Account, AccountType, TransactionStatus, TransactionType
from ledger.service import LedgerService
from ledger.storage import InMemoryStorage


USER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
ADMIN_ID = UUID("99999999-9999-9999-9999-999999999999")


class TestSession:
    """Tests for session handling."""

    def test_anonymous_session_rejected(self):
        """Every user operation needs a signed-in user."""
        accounts = AccountService(InMemoryStorage(), StaticSession())

        with pytest.raises(AuthenticationRequiredError):
            accounts.current_mode()

    def test_require_user(self):
        """The session user id is returned as-is."""
        assert require_user(StaticSession(USER_ID)) == USER_ID


class TestAccountModes:
    """Tests for switching between real and demo funds."""

    def test_new_account_is_real(self):
        """Accounts are created in real mode on first use."""
        accounts = AccountService(InMemoryStorage(), StaticSession(USER_ID))

        assert accounts.current_mode() == (USER_ID, False)
        assert accounts.current_account().account_type == AccountType.REAL

    def test_switch_moves_no_funds(self):
        """Switching modes changes the partition read, not the rows."""
        storage = InMemoryStorage()
        ledger = LedgerService(storage, Settings())
        accounts = AccountService(storage, StaticSession(USER_ID))
        ledger.append(USER_ID, TransactionType.DEPOSIT, "30.00", TransactionStatus.COMPLETED, is_demo=False)

        account = accounts.switch_account_type(AccountType.DEMO)
        assert account.is_demo
        assert ledger.compute_balance(*accounts.current_mode()) == Decimal("100.00")

        accounts.switch_account_type(AccountType.REAL)
        assert ledger.compute_balance(*accounts.current_mode()) == Decimal("30.00")

    def test_influencer_not_self_granted(self):
        """Influencer status can not be chosen directly."""
        accounts = AccountService(InMemoryStorage(), StaticSession(USER_ID))

        with pytest.raises(InvalidStateTransitionError):
            accounts.switch_account_type(AccountType.INFLUENCER)

    def test_influencer_keeps_status_in_demo(self):
        """A promoted user switches between the influencer variants."""
        accounts = AccountService(InMemoryStorage(), StaticSession(USER_ID))
        accounts.promote_to_influencer(USER_ID)

        assert accounts.switch_account_type(AccountType.DEMO).account_type == AccountType.DEMO_INFLUENCER
        assert accounts.switch_account_type(AccountType.REAL).account_type == AccountType.INFLUENCER

    def test_promote_is_one_time(self):
        """Promoting an influencer again is a no-op."""
        accounts = AccountService(InMemoryStorage(), StaticSession(USER_ID))

        assert accounts.promote_to_influencer(USER_ID).account_type == AccountType.INFLUENCER
        assert accounts.promote_to_influencer(USER_ID) is None


class TestAdmin:
    """Tests for administrator checks."""

    def test_non_admin_denied(self):
        """Regular users can not use admin operations."""
        accounts = AccountService(InMemoryStorage(), StaticSession(USER_ID))

        with pytest.raises(PermissionDeniedError):
            accounts.require_admin()

    def test_admin_allowed(self):
        """Accounts flagged as admin pass the check."""
        storage = InMemoryStorage()
        storage.save_account(Account(user_id=ADMIN_ID, is_admin=True))

        assert AccountService(storage, StaticSession(ADMIN_ID)).require_admin().user_id == ADMIN_ID


class TestUserMessages:
    """Tests for user-facing error messages."""

    def test_message_classes(self):
        """Each failure maps to one of four messages."""
        assert user_message(InsufficientFundsError()) == "You don't have enough funds for this."
        assert user_message(AuthenticationRequiredError()) == "Please sign in to continue."
        assert user_message(PermissionDeniedError()) == "Please sign in to continue."
        assert user_message(AlreadyClaimedError()) == "This reward was already claimed."
        assert user_message(BackendUnavailableError()) == "Something went wrong, please try again."

    def test_unknown_errors_ask_to_retry(self):
        """Exceptions from outside the service get the generic message."""
        assert user_message(RuntimeError("boom")) == "Something went wrong, please try again."
