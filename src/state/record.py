from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from common.formula import Formula, FormulaError, compile_formula

from .models import round_half_up


logger = logging.getLogger(__name__)

DEFAULT_FORMULA = "value * weight"
DEFAULT_CONVERSION_BASE = 45
DEFAULT_MAX_COINS = 15

FORMULA_NAMES = ("value", "weight")


@dataclass(frozen=True)
class SliderInput:
    value: float
    weight: float = 1.0


class RecordConverter:
    """
    Turns a set of effort sliders into a coin count.

    Each slider scores `formula(value, weight)`; the summed score divided by
    `conversion_base`, rounded half-up, is the coin count, capped at `max_coins`.
    """

    def __init__(
        self,
        formula: str = DEFAULT_FORMULA,
        *,
        conversion_base: int = DEFAULT_CONVERSION_BASE,
        max_coins: int = DEFAULT_MAX_COINS,
    ) -> None:
        if conversion_base <= 0:
            raise ValueError("conversion_base must be positive")
        self.conversion_base = conversion_base
        self.max_coins = max(0, max_coins)
        self.formula = self._compile(formula)

    @staticmethod
    def _compile(source: str) -> Formula:
        try:
            return compile_formula(source, FORMULA_NAMES)
        except FormulaError as exc:
            logger.warning("Invalid slider formula, using %r: %s", DEFAULT_FORMULA, exc)
            return compile_formula(DEFAULT_FORMULA, FORMULA_NAMES)

    def score(self, sliders: Iterable[SliderInput]) -> float:
        total = 0.0
        for slider in sliders:
            try:
                total += self.formula.evaluate(value=slider.value, weight=slider.weight)
            except FormulaError as exc:
                logger.warning("Slider scored 0: %s", exc)
        return total

    def coins_for(self, sliders: Iterable[SliderInput]) -> int:
        coins = round_half_up(self.score(sliders) / self.conversion_base)
        return min(self.max_coins, max(0, coins))

    def preview(self, sliders: Iterable[SliderInput], available: int) -> int:
        """Coins the record would add right now, capped at the jar's free space."""
        return min(self.coins_for(sliders), max(0, available))


__all__ = ["DEFAULT_FORMULA", "RecordConverter", "SliderInput"]
