from pathlib import Path

from booking_engine.config import SchedulingConfig, load_config


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    assert load_config(tmp_path) == SchedulingConfig()


def test_tables_are_flattened_and_bad_values_fall_back(tmp_path: Path) -> None:
    (tmp_path / "configs").mkdir()
    (tmp_path / "configs" / "scheduling.toml").write_text(
        '[leave]\nlate_notice_hours = 24\n\n[search]\nwiden_days = "soon"\nalternatives_limit = 5\n',
        encoding="utf-8",
    )
    cfg = load_config(tmp_path)
    assert cfg.late_notice_hours == 24.0
    assert cfg.alternatives_limit == 5
    assert cfg.widen_days == 7


def test_malformed_file_gives_defaults(tmp_path: Path) -> None:
    (tmp_path / "configs").mkdir()
    (tmp_path / "configs" / "scheduling.toml").write_text("[leave\nlate_notice_hours = ", encoding="utf-8")
    assert load_config(tmp_path) == SchedulingConfig()


def test_shipped_config_matches_defaults() -> None:
    root = Path(__file__).resolve().parents[1]
    assert load_config(root) == SchedulingConfig()
