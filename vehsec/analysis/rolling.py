"""Rolling-code progression detection and next-code prediction."""

from __future__ import annotations

import logging
import math

from vehsec.core.errors import InsufficientSamplesError
from vehsec.core.model import PatternKind, RollingCodePrediction, RollingCodeSequence

LOGGER = logging.getLogger(__name__)

MIN_OBSERVATIONS = 3
RATIO_TOLERANCE = 0.01


def predict_rolling_code(sequence: RollingCodeSequence) -> RollingCodePrediction:
    """Fit linear, multiplicative, then XOR progressions, in that order.

    The first pattern that explains every consecutive pair wins. A sequence no
    pattern explains yields ``PatternKind.NOT_FOUND``.
    """
    codes = list(sequence.observed_codes)
    if len(codes) < MIN_OBSERVATIONS:
        raise InsufficientSamplesError(
            f"Need at least {MIN_OBSERVATIONS} rolling codes for prediction, got {len(codes)}"
        )
    pairs = list(zip(codes, codes[1:]))

    diffs = [b - a for a, b in pairs]
    if all(d == diffs[0] for d in diffs):
        next_code = codes[-1] + diffs[0]
        LOGGER.info("Linear progression detected, next code %X", next_code)
        return RollingCodePrediction(PatternKind.LINEAR, next_code, diffs[0])

    if all(a != 0 for a, _ in pairs):
        ratios = [b / a for a, b in pairs]
        mean_ratio = sum(ratios) / len(ratios)
        if all(abs(r - mean_ratio) < RATIO_TOLERANCE for r in ratios):
            next_code = math.floor(codes[-1] * mean_ratio)
            LOGGER.info("Multiplicative progression detected, next code %X", next_code)
            return RollingCodePrediction(PatternKind.MULTIPLICATIVE, next_code, mean_ratio)

    xors = [a ^ b for a, b in pairs]
    if all(x == xors[0] for x in xors):
        next_code = codes[-1] ^ xors[0]
        LOGGER.info("XOR progression detected, next code %X", next_code)
        return RollingCodePrediction(PatternKind.XOR, next_code, xors[0])

    LOGGER.info("No progression fits %d observed codes", len(codes))
    return RollingCodePrediction(PatternKind.NOT_FOUND, None)
