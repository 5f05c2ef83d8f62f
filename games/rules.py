from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Any, Callable, ClassVar, Optional, Protocol

from ledger.errors import InvalidBetError
from ledger.models import Q, money


class GameType(str, Enum):
    CRASH = "crash"
    DICE = "dice"
    SCRATCH = "scratch"
    WHEEL = "wheel"
    LOTTERY = "lottery"


class Direction(str, Enum):
    HIGHER = "higher"
    LOWER = "lower"


@dataclass
class Outcome:
    game: GameType
    payout: Decimal
    multiplier: Optional[Decimal] = None
    details: dict = field(default_factory=dict)

    @property
    def won(self) -> bool:
        return self.payout > 0

    def to_dict(self) -> dict:
        return {
            "game": self.game.value,
            "payout": str(self.payout),
            "multiplier": str(self.multiplier) if self.multiplier is not None else None,
            "won": self.won,
            "details": self.details,
        }


class Game(Protocol):
    game_type: ClassVar[GameType]

    def validate(self, stake: Decimal) -> None: ...

    def resolve(self, stake: Decimal, rng: Any) -> Outcome: ...


# Dice

@dataclass
class DiceGame:
    """Predict whether a fair die lands higher or lower than ``target``.

    A roll equal to the target always loses.
    """

    target: int
    direction: Direction
    house_edge: Decimal = Decimal("0.05")
    game_type: ClassVar[GameType] = GameType.DICE

    def __post_init__(self):
        if isinstance(self.target, bool) or not isinstance(self.target, int) or not 1 <= self.target <= 6:
            raise InvalidBetError(f"Dice target must be an integer from 1 to 6, got {self.target!r}")
        try:
            self.direction = Direction(self.direction)
        except ValueError:
            raise InvalidBetError(f"Dice direction must be 'higher' or 'lower', got {self.direction!r}")
        if self.winning_faces == 0:
            raise InvalidBetError(f"No face is {self.direction.value} than {self.target}")

    @property
    def winning_faces(self) -> int:
        if self.direction == Direction.HIGHER:
            return 6 - self.target
        return self.target - 1

    @property
    def probability(self) -> Decimal:
        return Decimal(self.winning_faces) / Decimal(6)

    @property
    def multiplier(self) -> Decimal:
        fair = Decimal(6) / Decimal(self.winning_faces)
        return (fair * (1 - Decimal(self.house_edge))).quantize(Q)

    def is_win(self, roll: int) -> bool:
        if self.direction == Direction.HIGHER:
            return roll > self.target
        return roll < self.target

    def validate(self, stake: Decimal) -> None:
        pass

    def resolve(self, stake: Decimal, rng) -> Outcome:
        roll = rng.randint(1, 6)
        won = self.is_win(roll)
        return Outcome(
            game=self.game_type,
            payout=money(stake * self.multiplier) if won else money(0),
            multiplier=self.multiplier,
            details={"roll": roll, "target": self.target, "direction": self.direction.value},
        )


# Scratch card

@dataclass(frozen=True)
class Symbol:
    name: str
    value: Decimal


SCRATCH_SYMBOLS = (
    Symbol("Star", Decimal("0")),
    Symbol("Dollar", Decimal("5")),
    Symbol("Gift", Decimal("10")),
    Symbol("Gem", Decimal("20")),
    Symbol("Trophy", Decimal("50")),
    Symbol("Bag", Decimal("0")),
)

Grid = list[list[Symbol]]


def scratch_lines(grid: Grid) -> list[tuple[str, list[Symbol]]]:
    lines = [(f"row-{i}", list(grid[i])) for i in range(3)]
    lines += [(f"column-{j}", [grid[i][j] for i in range(3)]) for j in range(3)]
    lines.append(("diagonal", [grid[i][i] for i in range(3)]))
    lines.append(("anti-diagonal", [grid[i][2 - i] for i in range(3)]))
    return lines


def find_winning_line(grid: Grid) -> Optional[tuple[str, Symbol]]:
    for name, cells in scratch_lines(grid):
        first = cells[0]
        if first.value > 0 and all(cell == first for cell in cells):
            return name, first
    return None


@dataclass
class ScratchCardGame:
    price: Decimal = Decimal("5.00")
    force_win_probability: float = 0.20
    symbols: tuple = SCRATCH_SYMBOLS
    game_type: ClassVar[GameType] = GameType.SCRATCH

    def validate(self, stake: Decimal) -> None:
        if money(stake) != money(self.price):
            raise InvalidBetError(f"A scratch card costs {money(self.price)}, got {stake}")

    def deal(self, rng) -> Grid:
        grid = [[rng.choice(self.symbols) for _ in range(3)] for _ in range(3)]
        if rng.random() < self.force_win_probability:
            winner = rng.choice([s for s in self.symbols if s.value > 0])
            grid[0] = [winner, winner, winner]
        return grid

    def resolve(self, stake: Decimal, rng) -> Outcome:
        grid = self.deal(rng)
        line = find_winning_line(grid)
        payout = money(line[1].value * 3) if line else money(0)
        return Outcome(
            game=self.game_type,
            payout=payout,
            details={
                "grid": [[s.name for s in row] for row in grid],
                "winning_line": line[0] if line else None,
                "symbol": line[1].name if line else None,
            },
        )


# Wheel

@dataclass(frozen=True)
class WheelSegment:
    number: int
    multiplier: Decimal
    color: str


WHEEL_SEGMENTS = (
    WheelSegment(1, Decimal("2"), "#e74c3c"),
    WheelSegment(2, Decimal("1.5"), "#3498db"),
    WheelSegment(3, Decimal("3"), "#2ecc71"),
    WheelSegment(4, Decimal("0.5"), "#f39c12"),
    WheelSegment(5, Decimal("5"), "#9b59b6"),
    WheelSegment(6, Decimal("0.2"), "#e67e22"),
    WheelSegment(7, Decimal("1"), "#1abc9c"),
    WheelSegment(8, Decimal("10"), "#d35400"),
)


@dataclass
class WheelGame:
    segments: tuple = WHEEL_SEGMENTS
    game_type: ClassVar[GameType] = GameType.WHEEL

    def validate(self, stake: Decimal) -> None:
        pass

    def resolve(self, stake: Decimal, rng) -> Outcome:
        segment = self.segments[rng.randrange(len(self.segments))]
        # multipliers below 1 pay back part of the stake
        return Outcome(
            game=self.game_type,
            payout=money(stake * segment.multiplier),
            multiplier=segment.multiplier,
            details={"segment": segment.number, "color": segment.color},
        )


# Crash

# (weight, low, high): crash point drawn uniformly in [low, high)
CRASH_BANDS = (
    (0.10, Decimal("1.01"), Decimal("1.20")),
    (0.40, Decimal("1.20"), Decimal("2.00")),
    (0.30, Decimal("2.00"), Decimal("5.00")),
    (0.20, Decimal("5.00"), Decimal("15.00")),
)


def draw_crash_point(rng) -> Decimal:
    r = rng.random()
    cumulative = 0.0
    for weight, low, high in CRASH_BANDS:
        cumulative += weight
        if r < cumulative:
            break
    value = Decimal(str(rng.uniform(float(low), float(high)))).quantize(Q, rounding=ROUND_DOWN)
    return min(max(value, low), high - Q)


@dataclass
class CrashGame:
    """Crash bet settled in one shot at a preset ``auto_cash_out`` multiplier.

    Interactive rounds go through ``WageringService.start_crash_round``.
    """

    auto_cash_out: Optional[Decimal] = None
    crash_point_source: Callable[[Any], Decimal] = draw_crash_point
    game_type: ClassVar[GameType] = GameType.CRASH

    def validate(self, stake: Decimal) -> None:
        if self.auto_cash_out is None:
            raise InvalidBetError("A one-shot crash bet needs an auto cash-out multiplier")
        if Decimal(str(self.auto_cash_out)) <= 1:
            raise InvalidBetError(f"Auto cash-out must be above 1.00, got {self.auto_cash_out}")

    def resolve(self, stake: Decimal, rng) -> Outcome:
        crash_point = Decimal(self.crash_point_source(rng))
        target = Decimal(str(self.auto_cash_out)).quantize(Q)
        won = target < crash_point
        return Outcome(
            game=self.game_type,
            payout=money(stake * target) if won else money(0),
            multiplier=target if won else None,
            details={"crash_point": str(crash_point), "auto_cash_out": str(target)},
        )
