"""Support/Resistance level detection — pure functions."""

from coinforge.strategy.models import SRLevels


def _find_local_highs(highs: list[float], window: int) -> list[float]:
    """Highs strictly greater than every high *window* bars either side."""
    found: list[float] = []
    for i in range(window, len(highs) - window):
        level = highs[i]
        neighbours = highs[i - window : i] + highs[i + 1 : i + window + 1]
        if all(v < level for v in neighbours):
            found.append(level)
    return found


def _find_local_lows(lows: list[float], window: int) -> list[float]:
    """Lows strictly less than every low *window* bars either side."""
    found: list[float] = []
    for i in range(window, len(lows) - window):
        level = lows[i]
        neighbours = lows[i - window : i] + lows[i + 1 : i + window + 1]
        if all(v > level for v in neighbours):
            found.append(level)
    return found


def cluster_levels(levels: list[float], threshold: float = 0.02) -> list[float]:
    """Group sorted levels whose relative gap is within *threshold*.

    Each cluster is reduced to its average. Returns ascending levels.
    """
    if not levels:
        return []

    ordered = sorted(levels)
    clusters: list[list[float]] = []
    current: list[float] = [ordered[0]]
    for prev, level in zip(ordered, ordered[1:]):
        if prev != 0 and (level - prev) / prev <= threshold:
            current.append(level)
        else:
            clusters.append(current)
            current = [level]
    clusters.append(current)

    return [sum(c) / len(c) for c in clusters]


def detect_sr_levels(
    highs: list[float],
    lows: list[float],
    window: int = 14,
    cluster_threshold: float = 0.02,
) -> SRLevels:
    """Detect clustered support and resistance levels.

    Args:
        highs: Bar highs, oldest first.
        lows: Bar lows, oldest first.
        window: Bars on each side a local extreme must dominate.
        cluster_threshold: Relative distance under which levels merge.

    Returns:
        ``SRLevels``; both lists are empty when the series is shorter
        than ``2 × window + 1``.
    """
    if window <= 0:
        raise ValueError(f"window must be positive, got {window}")
    return SRLevels(
        supports=cluster_levels(_find_local_lows(lows, window), cluster_threshold),
        resistances=cluster_levels(_find_local_highs(highs, window), cluster_threshold),
    )
