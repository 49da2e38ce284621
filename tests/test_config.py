"""Tests for config module."""

import importlib

import dotenv
import pytest

import routinely.config as config_mod


@pytest.fixture()
def reload_config(monkeypatch):
    monkeypatch.setattr(dotenv, "load_dotenv", lambda: None)
    yield lambda: importlib.reload(config_mod)
    monkeypatch.undo()
    importlib.reload(config_mod)


def test_defaults(monkeypatch, reload_config):
    for name in ("ROUTINELY_JOB_ATTEMPTS", "ROUTINELY_SYNC_SECONDS", "DISCORD_TOKEN"):
        monkeypatch.delenv(name, raising=False)

    reload_config()

    assert config_mod.JOB_ATTEMPTS == 3
    assert config_mod.SYNC_SECONDS == 10
    assert config_mod.DISCORD_TOKEN is None


def test_values_from_environment(monkeypatch, tmp_path, reload_config):
    monkeypatch.setenv("ROUTINELY_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("ROUTINELY_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("ROUTINELY_REMINDER_CONCURRENCY", "4")

    reload_config()

    assert config_mod.TZ_NAME == "Europe/Berlin"
    assert config_mod.TZ.key == "Europe/Berlin"
    assert config_mod.DATA_ROOT == tmp_path
    assert config_mod.REMINDER_CONCURRENCY == 4


@pytest.mark.parametrize("raw", ["0", "-2", "ten"])
def test_invalid_integer_exits(monkeypatch, reload_config, raw):
    monkeypatch.setenv("ROUTINELY_JOB_BACKOFF_MS", raw)

    with pytest.raises(SystemExit):
        reload_config()
