import json

import pytest

from giveaway_overlay.utils.config import get_bool, get_config_value, get_int, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("OVERLAY_CONFIG_FILE", raising=False)
    monkeypatch.delenv("SERVER_PORT", raising=False)
    monkeypatch.delenv("LEADERBOARD_DEBOUNCE_MS", raising=False)


def test_missing_file_falls_back_to_defaults(tmp_path):
    config = load_config(str(tmp_path / "missing.conf"))

    assert get_int(config, "server.port", 0) == 3000
    assert get_int(config, "giveaway.tick_interval_ms", 0) == 1000
    assert get_int(config, "giveaway.checkpoint_interval_ms", 0) == 10000
    assert get_int(config, "leaderboard.debounce_ms", 0) == 1000
    assert get_config_value(config, "database.filename") == "giveaway.db"
    assert get_bool(config, "server.enable_test_routes") is False


def test_file_values_merge_into_defaults(tmp_path):
    path = tmp_path / "overlay.conf"
    path.write_text(json.dumps({"leaderboard": {"bits_leaders_count": 5}, "auth": {"owner_id": "1234"}}))

    config = load_config(str(path))

    assert get_int(config, "leaderboard.bits_leaders_count", 10) == 5
    assert get_int(config, "leaderboard.subs_leaders_count", 0) == 10
    assert get_config_value(config, "auth.owner_id") == "1234"


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "overlay.conf"
    path.write_text(json.dumps({"server": {"port": 3100}}))
    monkeypatch.setenv("SERVER_PORT", "4000")
    monkeypatch.setenv("LEADERBOARD_DEBOUNCE_MS", "250")

    config = load_config(str(path))

    assert get_int(config, "server.port", 0) == 4000
    assert get_int(config, "leaderboard.debounce_ms", 0) == 250


def test_invalid_file_is_ignored(tmp_path):
    path = tmp_path / "overlay.conf"
    path.write_text("{not json")

    config = load_config(str(path))

    assert get_int(config, "server.port", 0) == 3000


def test_value_helpers():
    config = {"server": {"enable_test_routes": "true", "port": "abc"}}

    assert get_bool(config, "server.enable_test_routes") is True
    assert get_int(config, "server.port", 3000) == 3000
    assert get_config_value(config, "server.missing.deeper", "x") == "x"
