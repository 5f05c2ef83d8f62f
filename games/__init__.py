"""
Games settled against the LottoWin ledger: dice, wheel, scratch cards,
crash rounds and the 6/49 lottery.
"""

from .rules import CrashGame, DiceGame, ScratchCardGame, WheelGame
from .settlement import BetResult, RoundRegistry, WageringService

__all__ = [
    "CrashGame",
    "DiceGame",
    "ScratchCardGame",
    "WheelGame",
    "BetResult",
    "RoundRegistry",
    "WageringService",
]
