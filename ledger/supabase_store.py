"""
Supabase-backed storage.

Tables: ``transactions``, ``profiles``, ``rewards``, ``referrals``,
``draws`` and ``tickets``. Privileged writes (demo funds, refunds) go
through the service-role client when one is configured.
"""

import logging
from typing import Optional
from uuid import UUID

from supabase import Client, create_client

from .config import Settings
from .errors import BackendUnavailableError, NotFoundError
from .models import Account, Draw, Referral, Reward, Ticket, Transaction, utcnow

logger = logging.getLogger(__name__)


def _execute(query, action: str) -> list[dict]:
    try:
        response = query.execute()
    except Exception as e:
        logger.error("Supabase %s failed: %s", action, e)
        raise BackendUnavailableError(f"Backend error during {action}") from e
    return response.data or []


class SupabaseStorage:
    def __init__(self, client: Client, service_client: Optional[Client] = None):
        self.client = client
        self.service_client = service_client or client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseStorage":
        client = create_client(settings.supabase_url, settings.supabase_key)
        service_client = None
        if settings.supabase_service_key:
            service_client = create_client(settings.supabase_url, settings.supabase_service_key)
        return cls(client, service_client)

    # Transactions

    def insert_transaction(self, record: Transaction, privileged: bool = False) -> Transaction:
        client = self.service_client if privileged else self.client
        rows = _execute(client.table("transactions").insert(record.model_dump(mode="json")), "insert transaction")
        return Transaction(**rows[0]) if rows else record

    def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        rows = _execute(
            self.client.table("transactions").select("*").eq("id", str(transaction_id)).limit(1),
            "get transaction",
        )
        return Transaction(**rows[0]) if rows else None

    def query_transactions(self, user_id=None, is_demo=None, type=None, status=None, limit=None):
        query = self.client.table("transactions").select("*")
        if user_id is not None:
            query = query.eq("user_id", str(user_id))
        if is_demo:
            query = query.eq("is_demo", True)
        elif is_demo is not None:
            # NULL is_demo rows predate demo mode and belong to real funds.
            query = query.or_("is_demo.eq.false,is_demo.is.null")
        if type is not None:
            query = query.eq("type", type.value)
        if status is not None:
            query = query.eq("status", status.value)
        query = query.order("created_at")
        if limit is not None:
            query = query.limit(limit)
        return [Transaction(**row) for row in _execute(query, "query transactions")]

    def update_transaction_status(self, transaction_id, status, details=None):
        changes = {"status": status.value, "updated_at": utcnow().isoformat()}
        if details is not None:
            changes["details"] = details
        rows = _execute(
            self.service_client.table("transactions").update(changes).eq("id", str(transaction_id)),
            "update transaction",
        )
        if not rows:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return Transaction(**rows[0])

    # Accounts

    def get_account(self, user_id):
        rows = _execute(
            self.client.table("profiles").select("*").eq("id", str(user_id)).limit(1),
            "get profile",
        )
        if not rows:
            return None
        row = dict(rows[0])
        row["user_id"] = row.pop("id")
        return Account(**row)

    def save_account(self, account):
        row = account.model_dump(mode="json")
        row["id"] = row.pop("user_id")
        _execute(self.service_client.table("profiles").upsert(row), "save profile")
        return account

    # Rewards

    def insert_reward(self, reward):
        _execute(self.service_client.table("rewards").insert(reward.model_dump(mode="json")), "insert reward")
        return reward

    def get_reward(self, reward_id):
        rows = _execute(self.client.table("rewards").select("*").eq("id", str(reward_id)).limit(1), "get reward")
        return Reward(**rows[0]) if rows else None

    def update_reward(self, reward):
        rows = _execute(
            self.service_client.table("rewards").update(reward.model_dump(mode="json")).eq("id", str(reward.id)),
            "update reward",
        )
        if not rows:
            raise NotFoundError(f"Reward {reward.id} not found")
        return reward

    def query_rewards(self, user_id):
        query = self.client.table("rewards").select("*").eq("user_id", str(user_id)).order("created_at")
        return [Reward(**row) for row in _execute(query, "query rewards")]

    # Referrals

    def insert_referral(self, referral):
        _execute(self.service_client.table("referrals").insert(referral.model_dump(mode="json")), "insert referral")
        return referral

    def update_referral(self, referral):
        rows = _execute(
            self.service_client.table("referrals")
            .update(referral.model_dump(mode="json"))
            .eq("id", str(referral.id)),
            "update referral",
        )
        if not rows:
            raise NotFoundError(f"Referral {referral.id} not found")
        return referral

    def query_referrals(self, referrer_id=None, referred_id=None, status=None):
        query = self.client.table("referrals").select("*")
        if referrer_id is not None:
            query = query.eq("referrer_id", str(referrer_id))
        if referred_id is not None:
            query = query.eq("referred_id", str(referred_id))
        if status is not None:
            query = query.eq("status", status.value)
        return [Referral(**row) for row in _execute(query, "query referrals")]

    # Draws and tickets

    def insert_draw(self, draw):
        _execute(self.service_client.table("draws").insert(draw.model_dump(mode="json")), "insert draw")
        return draw

    def get_draw(self, draw_id):
        rows = _execute(self.client.table("draws").select("*").eq("id", str(draw_id)).limit(1), "get draw")
        return Draw(**rows[0]) if rows else None

    def update_draw(self, draw):
        rows = _execute(
            self.service_client.table("draws").update(draw.model_dump(mode="json")).eq("id", str(draw.id)),
            "update draw",
        )
        if not rows:
            raise NotFoundError(f"Draw {draw.id} not found")
        return draw

    def query_draws(self, status=None):
        query = self.client.table("draws").select("*")
        if status is not None:
            query = query.eq("status", status.value)
        return [Draw(**row) for row in _execute(query.order("draw_date"), "query draws")]

    def insert_ticket(self, ticket):
        _execute(self.client.table("tickets").insert(ticket.model_dump(mode="json")), "insert ticket")
        return ticket

    def update_ticket(self, ticket):
        rows = _execute(
            self.service_client.table("tickets").update(ticket.model_dump(mode="json")).eq("id", str(ticket.id)),
            "update ticket",
        )
        if not rows:
            raise NotFoundError(f"Ticket {ticket.id} not found")
        return ticket

    def query_tickets(self, draw_id=None, user_id=None):
        query = self.client.table("tickets").select("*")
        if draw_id is not None:
            query = query.eq("draw_id", str(draw_id))
        if user_id is not None:
            query = query.eq("user_id", str(user_id))
        return [Ticket(**row) for row in _execute(query.order("created_at"), "query tickets")]
