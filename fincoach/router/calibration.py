from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, replace

from ..config import (
    CALIBRATION_BIAS,
    CALIBRATION_SCALE,
    CALIBRATION_TEMPERATURE,
    CALIBRATION_TEMPERATURE_MAX,
    CALIBRATION_TEMPERATURE_MIN,
    CALIBRATION_VERSION,
)
from .contracts import ConfidenceLevel

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_MIN = 0.7
MEDIUM_CONFIDENCE_MIN = 0.4
MISMATCH_FACTOR = 0.95
MATCH_FACTOR = 1.02


@dataclass(frozen=True)
class CalibrationParams:
    temperature: float = CALIBRATION_TEMPERATURE
    bias: float = CALIBRATION_BIAS
    scale: float = CALIBRATION_SCALE
    version: str = CALIBRATION_VERSION
    temperature_min: float = CALIBRATION_TEMPERATURE_MIN
    temperature_max: float = CALIBRATION_TEMPERATURE_MAX


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _sigmoid(value: float) -> float:
    if value >= 0:
        return 1.0 / (1.0 + math.exp(-value))
    exp_value = math.exp(value)
    return exp_value / (1.0 + exp_value)


def confidence_level(calibrated: float) -> ConfidenceLevel:
    if calibrated >= HIGH_CONFIDENCE_MIN:
        return "high"
    if calibrated >= MEDIUM_CONFIDENCE_MIN:
        return "medium"
    return "low"


class Calibrator:
    """Maps raw rule scores to calibrated probabilities.

    Shared across conversations; the temperature moves with labeled feedback so
    reads and updates go through a lock.
    """

    def __init__(self, params: CalibrationParams | None = None) -> None:
        self._params = params or CalibrationParams()
        self._lock = threading.Lock()

    @property
    def params(self) -> CalibrationParams:
        with self._lock:
            return self._params

    def calibrate(self, raw: float) -> float:
        params = self.params
        temperature = max(params.temperature, 1e-6)
        value = (_sigmoid(raw / temperature) + params.bias) * params.scale
        if math.isnan(value):
            return 0.0
        return _clamp(value, 0.0, 1.0)

    def update(self, expected_intent: str, actual_intent: str) -> float:
        factor = MATCH_FACTOR if expected_intent == actual_intent else MISMATCH_FACTOR
        with self._lock:
            current = self._params
            temperature = _clamp(current.temperature * factor, current.temperature_min, current.temperature_max)
            self._params = replace(current, temperature=temperature)
        logger.info(
            "calibration_updated expected=%s actual=%s temperature=%.4f version=%s",
            expected_intent,
            actual_intent,
            temperature,
            current.version,
        )
        return temperature
