import shutil

import pytest

from rtvm.core.alias_store import AliasStore
from rtvm.core.registry import InstallationRegistry
from rtvm.core.resolver import (
    AliasNotFound,
    AliasResolutionDangling,
    AmbiguousLiteralVersion,
    Resolver,
    UnresolvableAlias,
    VersionNotInstalled,
)
from rtvm.core.tool_plugin import PluginRegistry
from rtvm.core.version_utils import parse_spec


@pytest.fixture
def registry(config_manager):
    return InstallationRegistry(config_manager, PluginRegistry(config_manager, windows=False))


@pytest.fixture
def alias_store(config_manager, registry):
    return AliasStore(config_manager, registry)


@pytest.fixture
def resolver(registry, alias_store):
    return Resolver(registry, alias_store)


@pytest.fixture
def jdks(make_install):
    for version in ("21.0.1", "21.0.7", "21.5.0", "17.0.9"):
        make_install("java", version)


def resolve(resolver, raw):
    return resolver.resolve("java", parse_spec(raw)).raw


def test_partial_version_selects_highest_match(resolver, jdks):
    assert resolve(resolver, "21") == "21.5.0"
    assert resolve(resolver, "21.0") == "21.0.7"
    assert resolve(resolver, "17") == "17.0.9"
    assert resolve(resolver, "v21") == "21.5.0"


def test_exact_version_takes_precedence(resolver, jdks, make_install):
    make_install("java", "21.0.7+6")
    assert resolve(resolver, "21.0.7") == "21.0.7"
    assert resolve(resolver, "21.0.7+6") == "21.0.7+6"


def test_missing_components_are_wildcards_not_zero(resolver, make_install):
    make_install("java", "21.0.7")
    assert resolve(resolver, "21") == "21.0.7"
    with pytest.raises(VersionNotInstalled):
        resolve(resolver, "21.1")


def test_no_match_reports_not_installed(resolver, jdks):
    with pytest.raises(VersionNotInstalled) as exc_info:
        resolve(resolver, "99.99.99")
    assert "rtvm install java 99.99.99" in exc_info.value.remediation


def test_resolution_is_deterministic(resolver, jdks):
    results = {resolve(resolver, "21") for _ in range(5)}
    assert results == {"21.5.0"}


def test_remote_aliases_cannot_resolve_locally(resolver, jdks):
    for raw in ("lts", "latest", "lts/*"):
        with pytest.raises(UnresolvableAlias):
            resolve(resolver, raw)


def test_alias_resolves_to_target(resolver, alias_store, jdks):
    alias_store.set("java", "default", "17.0.9")
    assert resolve(resolver, "default") == "17.0.9"


def test_missing_alias(resolver, jdks):
    with pytest.raises(AliasNotFound):
        resolve(resolver, "default")


def test_dangling_alias_is_reported(resolver, alias_store, config_manager, jdks):
    alias_store.set("java", "default", "17.0.9")
    shutil.rmtree(config_manager.tool_versions_dir("java") / "17.0.9")

    with pytest.raises(AliasResolutionDangling) as exc_info:
        resolve(resolver, "default")
    assert exc_info.value.target == "17.0.9"


def test_user_alias_used_as_literal(resolver, alias_store, jdks):
    alias_store.set("java", "work", "21.0.1")
    assert resolve(resolver, "work") == "21.0.1"


def test_literal_matches_case_insensitively(resolver, make_install):
    make_install("java", "Temurin-JDK")
    assert resolve(resolver, "temurin-jdk") == "Temurin-JDK"


def test_ambiguous_literal(resolver, make_install):
    make_install("java", "Corretto")
    make_install("java", "corretto")

    with pytest.raises(AmbiguousLiteralVersion) as exc_info:
        resolve(resolver, "CORRETTO")
    assert sorted(exc_info.value.candidates) == ["Corretto", "corretto"]


def test_resolve_result_wraps_errors(resolver, jdks):
    ok = resolver.resolve_result("java", parse_spec("21"))
    assert ok.ok and ok.installed.raw == "21.5.0"

    failed = resolver.resolve_result("java", parse_spec("11"))
    assert not failed.ok
    assert isinstance(failed.error, VersionNotInstalled)
