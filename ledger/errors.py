from enum import Enum


class MessageClass(str, Enum):
    FUNDS = "funds"
    SIGN_IN = "sign_in"
    RETRY = "retry"
    ALREADY_CLAIMED = "already_claimed"


USER_MESSAGES = {
    MessageClass.FUNDS: "You don't have enough funds for this.",
    MessageClass.SIGN_IN: "Please sign in to continue.",
    MessageClass.RETRY: "Something went wrong, please try again.",
    MessageClass.ALREADY_CLAIMED: "This reward was already claimed.",
}


class LedgerServiceError(Exception):
    message_class = MessageClass.RETRY


class InsufficientFundsError(LedgerServiceError):
    message_class = MessageClass.FUNDS


class InvalidStakeError(LedgerServiceError):
    pass


class InvalidBetError(LedgerServiceError):
    pass


class AuthenticationRequiredError(LedgerServiceError):
    message_class = MessageClass.SIGN_IN


class PermissionDeniedError(LedgerServiceError):
    message_class = MessageClass.SIGN_IN


class AlreadyClaimedError(LedgerServiceError):
    message_class = MessageClass.ALREADY_CLAIMED


class RewardExpiredError(LedgerServiceError):
    pass


class AccountModeMismatchError(LedgerServiceError):
    pass


class BackendUnavailableError(LedgerServiceError):
    pass


class NotFoundError(LedgerServiceError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class BetInProgressError(LedgerServiceError):
    pass


class RoundAbandonedError(LedgerServiceError):
    pass


def user_message(error: Exception) -> str:
    message_class = getattr(error, "message_class", MessageClass.RETRY)
    return USER_MESSAGES[message_class]
