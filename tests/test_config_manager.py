import json

import pytest

from rtvm.core.config_manager import ConfigManager, ConfigValidationError


def test_creates_layout_and_default_config(tmp_path):
    root = tmp_path / "data"
    config_manager = ConfigManager(root_dir=root)

    for name in ("versions", "alias", "cache", "logs"):
        assert (root / name).is_dir()

    config = config_manager.get_config()
    assert config_manager.config_file.is_file()
    assert set(config["settings"]["tool_templates"]) == {"java", "node", "python"}
    assert config_manager.get_cache_expire_time() == 86400
    assert config_manager.get_search_parent_dirs() is False


def test_root_defaults_to_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("RTVM_DIR", str(tmp_path / "from-env"))
    assert ConfigManager().root_dir == tmp_path / "from-env"


def test_corrupt_config_falls_back_to_defaults(config_manager):
    config_manager.config_file.write_text("{not json", encoding="utf-8")

    config = config_manager.load_config()

    assert config["settings"]["download_retry_count"] == 3
    assert config_manager.get_env_rule("java")["home_var"] == "JAVA_HOME"


def test_old_config_gets_missing_fields(config_manager):
    old = {"settings": {"cache_expire_time": 60, "tool_templates": {}}}
    config_manager.config_file.write_text(json.dumps(old), encoding="utf-8")

    config_manager.load_config()

    assert config_manager.get_cache_expire_time() == 60
    assert config_manager.get_request_rate_limit() == 10
    assert config_manager.get_tool_template("node")["marker_files"] == [".nvmrc", ".node-version"]


def test_set_dotted_key_persists(config_manager):
    config_manager.set("settings.search_parent_dirs", True)

    reloaded = ConfigManager(root_dir=config_manager.root_dir)
    assert reloaded.get_search_parent_dirs() is True
    assert reloaded.get("settings.search_parent_dirs") is True
    assert reloaded.get("settings.missing.key", "fallback") == "fallback"


def test_invalid_value_is_rejected_and_reverted(config_manager):
    with pytest.raises(ConfigValidationError):
        config_manager.set("settings.cache_expire_time", "soon")
    with pytest.raises(ConfigValidationError):
        config_manager.set("settings.download_retry_count", True)

    assert config_manager.get_cache_expire_time() == 86400
    assert config_manager.get_download_retry_count() == 3


def test_template_without_home_var_is_invalid(config_manager):
    config = config_manager.get_default_config()
    config["settings"]["tool_templates"]["ruby"] = {"env_rule": {}}

    with pytest.raises(ConfigValidationError):
        config_manager.validate_config(config)


def test_custom_tool_template(config_manager):
    config_manager.set("settings.tool_templates.go", {
        "display_name": "Go",
        "env_rule": {"home_var": "GOROOT", "path_entries": ["bin"]},
        "probe_files": ["bin/go"],
        "marker_files": [".go-version"],
    })

    assert config_manager.get_env_rule("go")["home_var"] == "GOROOT"


def test_cache_round_trip_and_clear(config_manager):
    config_manager.set_cache("node_versions", {"versions": []})
    assert ConfigManager(root_dir=config_manager.root_dir).get_cache() == {"node_versions": {"versions": []}}

    config_manager.clear_cache()
    assert ConfigManager(root_dir=config_manager.root_dir).get_cache() == {}


def test_reset_to_default(config_manager):
    config_manager.set("settings.cache_expire_time", 5)
    config_manager.reset_to_default()
    assert config_manager.get_cache_expire_time() == 86400


def test_builtin_template_gains_new_fields_but_keeps_user_edits(config_manager):
    old = config_manager.get_default_config()
    java = old["settings"]["tool_templates"]["java"]
    del java["detect_paths"]
    java["display_name"] = "My JDK"
    config_manager.config_file.write_text(json.dumps(old), encoding="utf-8")

    config_manager.load_config()

    template = config_manager.get_tool_template("java")
    assert template["display_name"] == "My JDK"
    assert "/usr/lib/jvm" in template["detect_paths"]["linux"]


def test_detect_paths_must_map_os_to_list(config_manager):
    config = config_manager.get_default_config()
    config["settings"]["tool_templates"]["node"]["detect_paths"] = {"linux": "/opt/node"}

    with pytest.raises(ConfigValidationError):
        config_manager.validate_config(config)
