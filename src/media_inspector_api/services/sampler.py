"""Timestamp selection for thumbnail extraction."""
from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..config import settings
from ..errors import InvalidInputError, SamplingError

MODES = ("random", "timeline", "explicit")
MODE_ALIASES = {"custom": "explicit"}


@dataclass
class SamplePlan:
    """Timestamps (seconds) to extract, in extraction order."""
    mode: str
    timestamps: List[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.timestamps)


def normalize_mode(mode: Optional[str], explicit: Optional[Sequence[float]] = None) -> str:
    """Resolve the requested mode; absent means explicit if timestamps were given."""
    if not mode:
        return "explicit" if explicit else "random"
    mode = MODE_ALIASES.get(mode.strip().lower(), mode.strip().lower())
    if mode not in MODES:
        raise InvalidInputError(f"Invalid mode: {mode}")
    return mode


def clamp_count(count: Optional[int], max_count: Optional[int] = None) -> int:
    max_count = max_count or settings.THUMBNAIL_MAX_COUNT
    if count is None:
        count = settings.THUMBNAIL_DEFAULT_COUNT
    return max(1, min(int(count), max_count))


def _timeline(duration: float, count: int) -> List[float]:
    return [(i + 1) / (count + 1) * duration for i in range(count)]


def _random(duration: float, count: int, rng: random.Random) -> List[float]:
    # Uniform on a 10 ms grid, keeping a margin away from both ends
    margin = min(3.0, 0.05 * duration)
    lo = math.ceil(margin * 100)
    hi = math.floor((duration - margin) * 100)
    if hi < lo:
        return [duration / 2]

    target = min(count, hi - lo + 1)
    picked = set()
    while len(picked) < target:
        picked.add(rng.randint(lo, hi))
    return sorted(c / 100 for c in picked)


def _explicit(duration: float, count: int, explicit: Optional[Sequence[float]]) -> List[float]:
    kept = []
    for value in explicit or ():
        try:
            ts = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(ts) and 0 <= ts <= duration:
            kept.append(ts)
    return kept[:count]


def plan(
    duration: Optional[float],
    count: Optional[int],
    mode: Optional[str],
    explicit: Optional[Sequence[float]] = None,
    rng: Optional[random.Random] = None,
) -> SamplePlan:
    """
    Build a sample plan for a media of ``duration`` seconds.

    Args:
        duration: Media duration in seconds
        count: Requested number of timestamps, clamped to [1, THUMBNAIL_MAX_COUNT]
        mode: random, timeline or explicit (alias custom)
        explicit: Caller timestamps for explicit mode
        rng: Random source, injectable for tests

    Raises:
        SamplingError: duration unknown, or no explicit timestamp within range
    """
    if duration is None or not math.isfinite(duration) or duration <= 0:
        raise SamplingError("Could not determine video duration")

    mode = normalize_mode(mode, explicit)
    count = clamp_count(count)

    if mode == "timeline":
        timestamps = _timeline(duration, count)
    elif mode == "random":
        timestamps = _random(duration, count, rng or random.Random())
    else:
        timestamps = _explicit(duration, count, explicit)
        if not timestamps:
            raise SamplingError("No valid timestamps within video duration")

    return SamplePlan(mode=mode, timestamps=timestamps)


def plan_comparison(
    duration_a: Optional[float],
    duration_b: Optional[float],
    count: Optional[int],
    mode: Optional[str],
    explicit: Optional[Sequence[float]] = None,
    rng: Optional[random.Random] = None,
) -> SamplePlan:
    """Plan over the shorter of two media so every timestamp exists in both."""
    durations = [d for d in (duration_a, duration_b) if d is not None]
    if len(durations) < 2 or min(durations) <= 0:
        raise SamplingError("Could not determine duration of both videos")
    return plan(min(durations), count, mode, explicit, rng)
