from __future__ import annotations

from pathlib import Path

import pytest

from config.config import AppConfig, RemindersConfig, load_config, validate_config


CONFIG_YAML = """
supabase:
  url: "${TEST_SUPABASE_URL:http://localhost:54321/}"
  anon_key: "${TEST_SUPABASE_KEY:your_supabase_anon_key_here}"
reminders:
  window_minutes: 20
  permission: "${TEST_PERMISSION:default}"
storage:
  backend: "memory"
"""


def write_config(tmp_path: Path, text: str = CONFIG_YAML) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_expands_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TEST_SUPABASE_URL", raising=False)
    monkeypatch.delenv("ZNCRM_LOG_LEVEL", raising=False)

    config = load_config(write_config(tmp_path))

    assert config.supabase.url == "http://localhost:54321"
    assert config.reminders.window_minutes == 20
    assert config.reminders.check_interval_seconds == 60
    assert config.reminders.fallback_title == "Afspraak"
    assert config.reminders.permission == "default"
    assert config.storage.backend == "memory"
    assert config.logging.level == "INFO"


def test_load_config_reads_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("TEST_SUPABASE_KEY", "anon-key")
    monkeypatch.setenv("TEST_PERMISSION", "Granted")
    monkeypatch.setenv("ZNCRM_LOG_LEVEL", "DEBUG")

    config = load_config(write_config(tmp_path))

    assert config.supabase.url == "https://project.supabase.co"
    assert config.supabase.anon_key == "anon-key"
    assert config.reminders.permission == "granted"
    assert config.logging.level == "DEBUG"
    assert validate_config(config) == []


def test_config_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = write_config(tmp_path)
    monkeypatch.setenv("ZNCRM_CONFIG_PATH", str(path))

    assert load_config().storage.backend == "memory"


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml")


def test_invalid_permission_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_PERMISSION", "maybe")
    with pytest.raises(ValueError):
        load_config(write_config(tmp_path))


def test_missing_supabase_section_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        load_config(write_config(tmp_path, "reminders:\n  enabled: false\n"))


def test_validate_config_reports_problems() -> None:
    config = AppConfig(
        supabase={"url": "localhost", "anon_key": "your_supabase_anon_key_here"},
        reminders=RemindersConfig(check_interval_seconds=0, window_minutes=-1),
        storage={"backend": "sqlite"},
    )

    problems = validate_config(config)

    assert len(problems) == 5
    assert any("SUPABASE_URL" in p for p in problems)
    assert any("SUPABASE_ANON_KEY" in p for p in problems)
