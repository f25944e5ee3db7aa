"""Deviation scoring against baselines.

The engine does not estimate a real standard deviation. One unit of
deviation is 20% of the baseline value, so ``deviation(v, b)`` reads as
"how many 20%-steps is ``v`` away from ``b``". The model is approximate and
kept as-is because callers compare against these exact numbers; revisit it
together with the detector thresholds, never one without the other.
"""

SIGMA_FRACTION = 0.2


def deviation(observed: float, baseline: float) -> float:
    """Return ``|observed - baseline| / (baseline * 0.2)``, or 0 for a zero baseline."""
    if baseline == 0:
        return 0.0
    return abs(observed - baseline) / abs(baseline * SIGMA_FRACTION)


def confidence(deviation_score: float, ceiling: float) -> float:
    """Confidence of an anomaly given its deviation and a check-specific ceiling."""
    if ceiling <= 0:
        return 1.0
    return max(0.0, min(deviation_score / ceiling, 1.0))
