"""
Edge Weight Functions

weight = base_travel_time + congestion_penalty(load, capacity) + signal_delay

All terms are seconds. Penalties are non-negative, so the weight never
drops below the free-flow travel time.
"""

import math
from typing import Any, Dict, Optional

import numpy as np

EARTH_RADIUS_M = 6_371_000.0


def great_circle_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in meters"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


class CongestionModel:
    """
    BPR-style congestion penalty with an overload term

    penalty = base * (alpha * r^beta + overload_gain * max(0, r - 1)^2)

    Monotone in r = load / capacity; the quadratic overload term makes the
    curve rise sharply past r = 1 without ever becoming infinite.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.alpha = float(config.get('alpha', 0.15))
        self.beta = float(config.get('beta', 4.0))
        self.overload_gain = float(config.get('overloadGain', 2.0))

        if self.alpha < 0 or self.beta < 1 or self.overload_gain < 0:
            raise ValueError("congestion parameters must be alpha >= 0, beta >= 1, overloadGain >= 0")

    def ratio(self, load: float, capacity: float) -> float:
        return load / capacity if capacity > 0 else 0.0

    # Ratio ceiling for the penalty curve only; the stored load is untouched
    MAX_PENALTY_RATIO = 1000.0

    def penalty(self, base_travel_time: float, load: float, capacity: float) -> float:
        r = min(self.ratio(load, capacity), self.MAX_PENALTY_RATIO)
        overload = max(0.0, r - 1.0)
        return base_travel_time * (self.alpha * r ** self.beta + self.overload_gain * overload ** 2)


def decay_factors(ages_s: np.ndarray, half_life_s: float) -> np.ndarray:
    """
    Exponential decay multipliers for penalties with the given ages

    Ages are clipped at zero so clock skew never amplifies a penalty.
    """
    if half_life_s <= 0:
        return np.ones_like(ages_s, dtype=float)
    ages = np.clip(np.asarray(ages_s, dtype=float), 0.0, None)
    return np.power(0.5, ages / half_life_s)


def segment_weight(
    base_travel_time: float,
    congestion_penalty: float,
    signal_delay: float,
) -> float:
    weight = base_travel_time + max(0.0, congestion_penalty) + max(0.0, signal_delay)
    if not math.isfinite(weight):
        raise ValueError(f"non-finite segment weight ({base_travel_time}, {congestion_penalty}, {signal_delay})")
    return weight
