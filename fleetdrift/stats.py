import math
from typing import Sequence

def round2(value: float) -> float:
    """Round to the 2 decimals every stored and reported float uses."""
    return round(value, 2)

def windowed_mean(values: Sequence[float], window: int) -> float:
    """Mean over a nominal window of `window` days.

    Days with no data contribute nothing, so fewer values than `window`
    pulls the mean towards zero. Score thresholds are calibrated against
    this arithmetic.
    """
    if window <= 0:
        return 0.0
    return sum(values) / window

def population_stddev(values: Sequence[float], mean: float, window: int) -> float:
    """Population standard deviation with the same fixed divisor as windowed_mean."""
    if window <= 0:
        return 0.0
    return math.sqrt(sum((v - mean) ** 2 for v in values) / window)

def drift_percent(recent: float, baseline: float) -> float:
    """Percentage change of recent against baseline.

    A zero baseline yields 100 when there is any recent activity and 0
    otherwise, never an unbounded ratio.
    """
    if baseline == 0:
        return 100.0 if recent > 0 else 0.0
    return (recent - baseline) / baseline * 100
