import logging
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

from .models import Transaction

logger = logging.getLogger(__name__)


class ChangeEvent(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


Callback = Callable[[ChangeEvent, Transaction], None]


class ChangeFeed:
    """In-process fan-out of transaction changes to interested observers.

    Delivery is best effort: a failing observer is logged and skipped, the
    write that triggered it is already committed.
    """

    def __init__(self):
        self._subscribers: list[tuple[Optional[UUID], Callback]] = []

    def subscribe(self, callback: Callback, user_id: Optional[UUID] = None) -> Callable[[], None]:
        entry = (user_id, callback)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: ChangeEvent, transaction: Transaction) -> None:
        for user_id, callback in list(self._subscribers):
            if user_id is not None and user_id != transaction.user_id:
                continue
            try:
                callback(event, transaction)
            except Exception:
                logger.exception("Change feed observer failed for transaction %s", transaction.id)
