import json
from unittest import mock

import pytest

from rtvm.core.alias_store import AliasStore, AliasStoreError, AliasTargetError
from rtvm.core.registry import InstallationRegistry
from rtvm.core.resolver import VersionNotInstalled
from rtvm.core.tool_plugin import PluginRegistry


@pytest.fixture
def store(config_manager, make_install):
    make_install("java", "21.0.7")
    make_install("java", "17.0.9")
    registry = InstallationRegistry(config_manager, PluginRegistry(config_manager, windows=False))
    return AliasStore(config_manager, registry)


def test_set_get_list_remove(store):
    store.set("java", "default", "21.0.7")
    store.set("java", "work", "17.0.9")

    assert store.get("java", "default") == "21.0.7"
    assert store.list("java") == {"default": "21.0.7", "work": "17.0.9"}

    store.remove("java", "work")
    assert store.get("java", "work") is None
    # 重复删除不报错
    store.remove("java", "work")


def test_record_contains_version_and_path(store, config_manager):
    store.set("java", "default", "21.0.7")
    record = json.loads((config_manager.tool_alias_dir("java") / "default").read_text(encoding="utf-8"))
    assert record["version"] == "21.0.7"
    assert record["path"].endswith("21.0.7")
    assert "updated_at" in record


def test_alias_cannot_point_to_alias(store):
    store.set("java", "stable", "21.0.7")
    with pytest.raises(AliasTargetError):
        store.set("java", "prod", "stable")
    with pytest.raises(AliasTargetError):
        store.set("java", "prod", "default")
    assert store.get("java", "prod") is None


def test_target_must_be_installed(store):
    with pytest.raises(VersionNotInstalled):
        store.set("java", "default", "11.0.2")


def test_reserved_and_invalid_names_rejected(store):
    for name in ("lts", "latest", "21", "-x", "", "j21", "v17", "V17.0"):
        with pytest.raises(AliasStoreError):
            store.set("java", name, "21.0.7")


def test_failed_write_keeps_previous_record(store, config_manager):
    store.set("java", "default", "21.0.7")

    with mock.patch("rtvm.utils.atomic_file.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(AliasStoreError):
            store.set("java", "default", "17.0.9")

    assert store.get("java", "default") == "21.0.7"
    assert [p.name for p in config_manager.tool_alias_dir("java").iterdir()] == ["default"]


def test_interrupted_write_leftovers_are_ignored(store, config_manager):
    store.set("java", "default", "21.0.7")
    alias_dir = config_manager.tool_alias_dir("java")
    (alias_dir / ".default.x1y2.tmp").write_text('{"version": "17.0.9"', encoding="utf-8")

    assert store.get("java", "default") == "21.0.7"
    assert store.list("java") == {"default": "21.0.7"}


def test_corrupt_record_reads_as_missing(store, config_manager):
    alias_dir = config_manager.tool_alias_dir("java")
    alias_dir.mkdir(parents=True, exist_ok=True)
    (alias_dir / "broken").write_text("not json", encoding="utf-8")
    (alias_dir / "wrong").write_text('{"version": 21}', encoding="utf-8")

    assert store.get("java", "broken") is None
    assert store.get("java", "wrong") is None
    assert store.list("java") == {}

def test_names_with_letters_in_the_middle_are_allowed(store):
    store.set("java", "jdk21", "21.0.7")
    store.set("java", "lts-iron", "17.0.9")

    assert store.list("java") == {"jdk21": "21.0.7", "lts-iron": "17.0.9"}
