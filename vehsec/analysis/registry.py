"""Ordered strategy registry."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from vehsec.analysis.strategies import (
    AttackStrategy,
    BruteforceAttack,
    CorrelationAttack,
    DictionaryAttack,
    DifferentialPowerAttack,
    Evidence,
    FaultInjectionAttack,
    MathematicalAttack,
    PowerCorrelationAttack,
    TimingAttack,
)
from vehsec.core.errors import InsufficientSamplesError
from vehsec.core.model import CrackedKey

LOGGER = logging.getLogger(__name__)


class StrategyRegistry:
    def __init__(self, strategies: Iterable[AttackStrategy] = ()) -> None:
        self._strategies: list[AttackStrategy] = list(strategies)

    @property
    def strategies(self) -> tuple[AttackStrategy, ...]:
        return tuple(self._strategies)

    def register(self, strategy: AttackStrategy) -> None:
        self._strategies.append(strategy)

    def get(self, name: str) -> AttackStrategy | None:
        return next((s for s in self._strategies if s.name == name), None)

    def run(self, evidence: Evidence) -> CrackedKey | None:
        """Return the first result in priority order, or None if nothing applies."""
        for strategy in self._strategies:
            try:
                result = strategy.attempt(evidence)
            except InsufficientSamplesError as exc:
                LOGGER.info("Skipping %s: %s", strategy.name, exc)
                continue
            if result is not None:
                LOGGER.info(
                    "%s recovered %s key material via %s",
                    strategy.name,
                    evidence.algorithm,
                    result.method,
                )
                return result
        return None


def default_registry(*, bruteforce_bound: int = 100_000, fault_seed: int | None = None) -> StrategyRegistry:
    return StrategyRegistry(
        [
            DictionaryAttack(),
            BruteforceAttack(bound=bruteforce_bound),
            CorrelationAttack(),
            MathematicalAttack(),
            TimingAttack(),
            PowerCorrelationAttack(),
            DifferentialPowerAttack(),
            FaultInjectionAttack(seed=fault_seed),
        ]
    )
