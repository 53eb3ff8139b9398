from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


@dataclass
class SchedulingConfig:
    # Teacher ranking; scores are weighted sums of 0..1 components
    weight_availability: float = 0.4
    weight_specialization: float = 0.25
    weight_load: float = 0.2
    weight_affinity: float = 0.15
    weight_external: float = 0.0

    # Leave policy
    late_notice_hours: float = 48.0
    grace_postponements: int = 1
    makeup_suggestions: int = 3
    makeup_window_days: int = 30

    # Slot search
    adjacent_shift_minutes: int = 60
    slot_step_minutes: int = 30
    alternatives_limit: int = 3
    widen_days: int = 7
    session_search_days: int = 14
    group_capacity: int = 9

    # Store round trips
    store_timeout_sec: float = 5.0
    rollback_attempts: int = 3
    rollback_backoff_sec: float = 0.05

    # CP-SAT group planner
    solver_timeout_sec: int = 10
    solver_workers: int = 8


def _project_root() -> Path:
    # booking_engine/config.py -> project root is parents[1]
    return Path(__file__).resolve().parents[1]


def load_config(project_root: Path | str | None = None) -> SchedulingConfig:
    """Load settings from configs/scheduling.toml if present, else defaults.

    Tables ([weights], [leave], [search], [store], [solver]) are flattened,
    so keys may also sit at top level. Keys that fail to convert keep their
    default.
    """
    base = SchedulingConfig()
    root = _project_root() if project_root is None else Path(project_root)
    cfg = root / "configs" / "scheduling.toml"
    if not cfg.exists():
        return base
    try:
        data: Dict[str, Any] = tomllib.loads(cfg.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        logger.warning(f"Ignoring malformed {cfg}: {exc}")
        return base

    flat: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            flat.update(value)
        else:
            flat[key] = value

    for f in fields(SchedulingConfig):
        if f.name not in flat:
            continue
        default = getattr(base, f.name)
        try:
            setattr(base, f.name, type(default)(flat[f.name]))
        except (TypeError, ValueError):
            logger.warning(f"Bad value for {f.name}: {flat[f.name]!r}; keeping {default}")
    return base
