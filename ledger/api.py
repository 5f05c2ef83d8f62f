import random
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from games.lottery import LotteryService
from games.rules import CrashGame, DiceGame, ScratchCardGame, WheelGame
from games.settlement import RoundRegistry, WageringService

from .accounts import AccountService
from .auth import StaticSession
from .config import get_settings
from .errors import (
    AccountModeMismatchError,
    AlreadyClaimedError,
    AuthenticationRequiredError,
    BackendUnavailableError,
    BetInProgressError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    LedgerServiceError,
    NotFoundError,
    PermissionDeniedError,
    RoundAbandonedError,
    user_message,
)
from .log import setup_logging
from .models import (
    Account,
    BalanceResponse,
    BetRequest,
    CashbackRequest,
    ClaimResponse,
    ConfirmDepositRequest,
    CrashBetRequest,
    CreateDrawRequest,
    DepositRequest,
    DiceBetRequest,
    Draw,
    LedgerHistoryResponse,
    Referral,
    ReferralRequest,
    ResolveWithdrawalRequest,
    Reward,
    SwitchAccountRequest,
    Ticket,
    TicketRequest,
    Transaction,
    TransactionType,
    VIPTier,
    WithdrawalRequestIn,
)
from .payments import PaymentService
from .realtime import ChangeFeed
from .rewards import ReferralService, RewardService
from .service import LedgerService
from .storage import InMemoryStorage
from .vip import VIPService
from .withdrawals import WithdrawalService

settings = get_settings()
setup_logging(settings.log_level)

if settings.supabase_url and settings.supabase_key:
    from .supabase_store import SupabaseStorage
    storage = SupabaseStorage.from_settings(settings)
else:
    storage = InMemoryStorage()

feed = ChangeFeed()
registry = RoundRegistry()
rng = random.SystemRandom()


@dataclass
class Services:
    ledger: LedgerService
    accounts: AccountService
    withdrawals: WithdrawalService
    payments: PaymentService
    rewards: RewardService
    referrals: ReferralService
    wagering: WageringService
    lottery: LotteryService
    vip: VIPService


def build_services(session) -> Services:
    ledger = LedgerService(storage, settings, feed)
    accounts = AccountService(storage, session)
    rewards = RewardService(ledger, accounts)
    accounts.on_created.append(lambda account: rewards.grant_signup_bonus(account.user_id))
    referrals = ReferralService(rewards, accounts)
    return Services(
        ledger=ledger,
        accounts=accounts,
        withdrawals=WithdrawalService(ledger, accounts, rng=rng),
        payments=PaymentService(ledger, accounts, referrals),
        rewards=rewards,
        referrals=referrals,
        wagering=WageringService(ledger, accounts, registry, rng=rng),
        lottery=LotteryService(ledger, accounts),
        vip=VIPService(rewards),
    )


def get_services(x_user_id: Optional[UUID] = Header(default=None)) -> Services:
    return build_services(StaticSession(x_user_id))


ERROR_STATUS = (
    (AuthenticationRequiredError, status.HTTP_401_UNAUTHORIZED),
    (InsufficientFundsError, status.HTTP_402_PAYMENT_REQUIRED),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AlreadyClaimedError, status.HTTP_409_CONFLICT),
    (AccountModeMismatchError, status.HTTP_409_CONFLICT),
    (BetInProgressError, status.HTTP_409_CONFLICT),
    (RoundAbandonedError, status.HTTP_409_CONFLICT),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (BackendUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _http_error(e: LedgerServiceError) -> HTTPException:
    code = status.HTTP_400_BAD_REQUEST
    for error_type, error_code in ERROR_STATUS:
        if isinstance(e, error_type):
            code = error_code
            break
    return HTTPException(status_code=code, detail={"message": user_message(e), "error": str(e)})


app = FastAPI(
    title="LottoWin Ledger API",
    description="Balances, wagering settlement, withdrawals and rewards for LottoWin",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "lottowin-ledger"}


# Account

@app.get("/me/account", response_model=Account, tags=["Account"])
def get_account(services: Services = Depends(get_services)) -> Account:
    try:
        return services.accounts.current_account()
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/me/account-type", response_model=Account, tags=["Account"])
def switch_account_type(request: SwitchAccountRequest, services: Services = Depends(get_services)) -> Account:
    try:
        return services.accounts.switch_account_type(request.account_type)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/me/balance", response_model=BalanceResponse, tags=["Account"])
def get_balance(services: Services = Depends(get_services)) -> BalanceResponse:
    try:
        user_id, is_demo = services.accounts.current_mode()
        return services.ledger.get_balance(user_id, is_demo)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/me/ledger", response_model=LedgerHistoryResponse, tags=["Account"])
def get_ledger(limit: int = 50, offset: int = 0, services: Services = Depends(get_services)) -> LedgerHistoryResponse:
    try:
        user_id, is_demo = services.accounts.current_mode()
        return services.ledger.get_history(user_id, is_demo, limit, offset)
    except LedgerServiceError as e:
        raise _http_error(e)


# Deposits and withdrawals

@app.post("/deposits", response_model=Transaction, status_code=status.HTTP_201_CREATED, tags=["Payments"])
def create_deposit(request: DepositRequest, services: Services = Depends(get_services)) -> Transaction:
    try:
        return services.payments.initiate_deposit(request.amount, request.method)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/transactions/{transaction_id}", response_model=Transaction, tags=["Payments"])
def get_transaction(transaction_id: UUID, services: Services = Depends(get_services)) -> Transaction:
    try:
        user_id = services.accounts.current_account().user_id
        transaction = services.ledger.get_transaction(transaction_id)
        if transaction.user_id != user_id:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/deposits/{transaction_id}/status", response_model=Transaction, tags=["Payments"])
def deposit_status(
    transaction_id: UUID,
    polls: int = Query(0, ge=0, le=4),
    services: Services = Depends(get_services),
) -> Transaction:
    try:
        user_id = services.accounts.current_account().user_id
        transaction = services.ledger.get_transaction(transaction_id)
        if transaction.user_id != user_id or transaction.type != TransactionType.DEPOSIT:
            raise NotFoundError(f"Deposit {transaction_id} not found")
        return services.payments.poll_status(transaction_id, max_attempts=polls)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/withdrawals", response_model=Transaction, status_code=status.HTTP_201_CREATED, tags=["Payments"])
def request_withdrawal(request: WithdrawalRequestIn, services: Services = Depends(get_services)) -> Transaction:
    try:
        return services.withdrawals.request_withdrawal(request.amount, request.method, request.details)
    except LedgerServiceError as e:
        raise _http_error(e)


# Rewards and referrals

@app.get("/me/rewards", response_model=list[Reward], tags=["Rewards"])
def list_rewards(include_claimed: bool = False, services: Services = Depends(get_services)) -> list[Reward]:
    try:
        return services.rewards.list_rewards(include_claimed)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/rewards/{reward_id}/claim", response_model=ClaimResponse, tags=["Rewards"])
def claim_reward(reward_id: UUID, services: Services = Depends(get_services)) -> ClaimResponse:
    try:
        return services.rewards.claim_reward(reward_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/referrals", response_model=Referral, status_code=status.HTTP_201_CREATED, tags=["Rewards"])
def register_referral(request: ReferralRequest, services: Services = Depends(get_services)) -> Referral:
    try:
        user_id = services.accounts.current_account().user_id
        if user_id != request.referred_user_id:
            raise PermissionDeniedError("Referrals are registered by the referred user")
        return services.referrals.register_referral(request.referrer_user_id, request.referred_user_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/vip/tiers", response_model=list[VIPTier], tags=["Rewards"])
def list_vip_tiers(services: Services = Depends(get_services)) -> list[VIPTier]:
    return services.vip.tiers


@app.get("/vip/progress", tags=["Rewards"])
def vip_progress(points: int = 0, services: Services = Depends(get_services)):
    next_tier = services.vip.next_tier(points)
    return {
        "tier": services.vip.tier_for_points(points),
        "next_tier": next_tier,
        "progress": services.vip.progress(points),
    }


# Games

@app.post("/games/dice", tags=["Games"])
def play_dice(request: DiceBetRequest, services: Services = Depends(get_services)):
    try:
        game = DiceGame(target=request.target, direction=request.direction, house_edge=settings.house_edge)
        return services.wagering.place_bet(request.stake, game, request.round_id).to_dict()
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/games/wheel", tags=["Games"])
def play_wheel(request: BetRequest, services: Services = Depends(get_services)):
    try:
        return services.wagering.place_bet(request.stake, WheelGame(), request.round_id).to_dict()
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/games/scratch", tags=["Games"])
def play_scratch(request: BetRequest, services: Services = Depends(get_services)):
    try:
        game = ScratchCardGame(
            price=settings.scratch_card_price,
            force_win_probability=settings.scratch_force_win_probability,
        )
        return services.wagering.place_bet(request.stake, game, request.round_id).to_dict()
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/games/crash", tags=["Games"])
def play_crash(request: CrashBetRequest, services: Services = Depends(get_services)):
    try:
        game = CrashGame(auto_cash_out=request.auto_cash_out)
        return services.wagering.place_bet(request.stake, game, request.round_id).to_dict()
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/games/crash/rounds", status_code=status.HTTP_201_CREATED, tags=["Games"])
def start_crash_round(request: BetRequest, services: Services = Depends(get_services)):
    try:
        return services.wagering.start_crash_round(request.stake, round_id=request.round_id).to_dict()
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/games/crash/rounds/{round_id}", tags=["Games"])
def get_crash_round(round_id: UUID, services: Services = Depends(get_services)):
    try:
        crash_round = services.wagering.get_crash_round(round_id)
        crash_round.sync()
        return crash_round.to_dict()
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/games/crash/rounds/{round_id}/cash-out", tags=["Games"])
def cash_out(round_id: UUID, services: Services = Depends(get_services)):
    try:
        crash_round = services.wagering.get_crash_round(round_id)
        crash_round.sync()
        crash_round.cash_out()
        return crash_round.to_dict()
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/games/crash/rounds/{round_id}/abandon", tags=["Games"])
def abandon_crash_round(round_id: UUID, services: Services = Depends(get_services)):
    try:
        crash_round = services.wagering.get_crash_round(round_id)
        crash_round.abandon()
        return crash_round.to_dict()
    except LedgerServiceError as e:
        raise _http_error(e)


# Lottery

@app.get("/draws/next", response_model=Optional[Draw], tags=["Lottery"])
def get_next_draw(services: Services = Depends(get_services)) -> Optional[Draw]:
    return services.lottery.next_draw()


@app.post("/tickets", response_model=Ticket, status_code=status.HTTP_201_CREATED, tags=["Lottery"])
def purchase_ticket(request: TicketRequest, services: Services = Depends(get_services)) -> Ticket:
    try:
        return services.lottery.purchase_ticket(request.numbers, request.draw_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/me/tickets", response_model=list[Ticket], tags=["Lottery"])
def list_tickets(services: Services = Depends(get_services)) -> list[Ticket]:
    try:
        return services.lottery.list_tickets()
    except LedgerServiceError as e:
        raise _http_error(e)


# Admin

@app.post("/admin/withdrawals/{transaction_id}/resolve", response_model=Transaction, tags=["Admin"])
def resolve_withdrawal(
    transaction_id: UUID, request: ResolveWithdrawalRequest, services: Services = Depends(get_services)
) -> Transaction:
    try:
        return services.withdrawals.resolve_withdrawal(transaction_id, request.approve, request.reason)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/admin/withdrawals/process", response_model=list[Transaction], tags=["Admin"])
def process_withdrawals(limit: Optional[int] = None, services: Services = Depends(get_services)) -> list[Transaction]:
    try:
        return services.withdrawals.process_pending(limit)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/admin/deposits/{transaction_id}/confirm", response_model=Transaction, tags=["Admin"])
def confirm_deposit(
    transaction_id: UUID, request: ConfirmDepositRequest, services: Services = Depends(get_services)
) -> Transaction:
    try:
        services.accounts.require_admin()
        return services.payments.confirm_deposit(transaction_id, request.approve, request.reason)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/admin/rewards/expire", response_model=list[Reward], tags=["Admin"])
def expire_rewards(user_id: UUID, services: Services = Depends(get_services)) -> list[Reward]:
    try:
        services.accounts.require_admin()
        return services.rewards.expire_rewards(user_id)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/admin/vip/cashback", response_model=Optional[Reward], tags=["Admin"])
def issue_cashback(request: CashbackRequest, services: Services = Depends(get_services)) -> Optional[Reward]:
    try:
        services.accounts.require_admin()
        return services.vip.issue_cashback(request.user_id, request.net_loss, request.points, request.is_demo)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/admin/draws", response_model=Draw, status_code=status.HTTP_201_CREATED, tags=["Admin"])
def create_draw(request: CreateDrawRequest, services: Services = Depends(get_services)) -> Draw:
    try:
        return services.lottery.create_draw(request.winning_numbers, request.draw_date, request.jackpot)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/admin/draws/{draw_id}/settle", response_model=list[Ticket], tags=["Admin"])
def settle_draw(draw_id: UUID, services: Services = Depends(get_services)) -> list[Ticket]:
    try:
        return services.lottery.settle_draw(draw_id)
    except LedgerServiceError as e:
        raise _http_error(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
