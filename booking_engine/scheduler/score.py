from __future__ import annotations

from ..config import SchedulingConfig

# Prior classes together after which affinity stops growing
AFFINITY_SATURATION = 3


def score_teacher(
    *,
    exact: bool,
    shift_minutes: int,
    max_shift_minutes: int,
    specialized: bool,
    weekly_load: int,
    max_weekly_load: int,
    prior_classes: int,
    external: float | None,
    weights: SchedulingConfig,
) -> float:
    s = 0.0
    # Exact fit scores 1.0; a shifted slot at most 0.5, less the further it moves
    if exact:
        fit = 1.0
    else:
        fit = 0.5 * max(0.0, 1 - shift_minutes / max(1, max_shift_minutes + 1))
    s += weights.weight_availability * fit
    # Teaching the subject is required; listing it as a specialization is a bonus
    s += weights.weight_specialization * (1.0 if specialized else 0.5)
    # Prefer less-booked teachers to balance utilization
    cap = max(1, max_weekly_load)
    s += weights.weight_load * (1 - min(weekly_load, cap) / cap)
    s += weights.weight_affinity * min(1.0, prior_classes / AFFINITY_SATURATION)
    if external is not None:
        s += weights.weight_external * min(1.0, max(0.0, external))
    return round(s, 6)
