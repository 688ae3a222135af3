"""Signal quality scoring from latency and throughput (pure functions)."""

from onlinenow.models import LatencySample, QualityTier, ThroughputResult

# Score used for a missing or failed measurement
NEUTRAL_SCORE = 2


def latency_score(rtt_ms: float | None) -> int:
    if rtt_ms is None:
        return NEUTRAL_SCORE
    if rtt_ms < 20:
        return 4
    if rtt_ms < 50:
        return 3
    if rtt_ms < 100:
        return 2
    if rtt_ms < 200:
        return 1
    return 0


def throughput_score(speed_mbps: float | None) -> int:
    if speed_mbps is None:
        return NEUTRAL_SCORE
    if speed_mbps >= 50:
        return 4
    if speed_mbps >= 25:
        return 3
    if speed_mbps >= 10:
        return 2
    if speed_mbps >= 5:
        return 1
    return 0


def tier_for_total(total: int) -> QualityTier:
    if total >= 7:
        return QualityTier.EXCELLENT
    if total >= 5:
        return QualityTier.GOOD
    if total >= 3:
        return QualityTier.FAIR
    return QualityTier.POOR


def score(
    latency: LatencySample | None, throughput: ThroughputResult | None
) -> QualityTier:
    """Combine latency and throughput into a QualityTier.

    Each input scores 0-4; a missing or failed input scores NEUTRAL_SCORE.
    Totals 7-8 are Excellent, 5-6 Good, 3-4 Fair and 0-2 Poor.

    Examples:
        15 ms and 80 Mbps -> Excellent (4 + 4)
        250 ms and 2 Mbps -> Poor (0 + 0)
        15 ms, no throughput -> Good (4 + 2)
    """
    rtt = latency.rtt_ms if latency is not None else None
    speed = throughput.speed_mbps if throughput is not None else None
    return tier_for_total(latency_score(rtt) + throughput_score(speed))
