import json
import pytest
from clerva.services.group_service import validate_max_members
from clerva.utils.config_handler import DEFAULT_DATA, config_path, get_setting, load_config, update_settings
from clerva.utils.errors import APIError


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
    return tmp_path


def test_load_config_writes_defaults(config_dir):
    data = load_config()
    assert data == DEFAULT_DATA
    assert config_path().exists()


def test_missing_keys_are_filled(config_dir):
    (config_dir / "config.json").write_text(json.dumps({"group_max_members": 20}), encoding="utf-8")
    data = load_config()
    assert data["group_max_members"] == 20
    assert data["group_min_members"] == DEFAULT_DATA["group_min_members"]


def test_unreadable_config_falls_back(config_dir):
    (config_dir / "config.json").write_text("{not json", encoding="utf-8")
    assert get_setting("group_max_members") == DEFAULT_DATA["group_max_members"]


def test_update_settings_ignores_unknown_keys(config_dir):
    data = update_settings({"group_max_members": 12, "bogus": True})
    assert data["group_max_members"] == 12
    assert "bogus" not in load_config()


def test_group_bounds_follow_settings(config_dir):
    assert validate_max_members(50) == 50
    update_settings({"group_max_members": 12})
    assert validate_max_members(12) == 12
    with pytest.raises(APIError) as exc:
        validate_max_members(13)
    assert exc.value.message == "Max members must be an integer between 2 and 12"
    with pytest.raises(APIError):
        validate_max_members("10")
    with pytest.raises(APIError):
        validate_max_members(True)
