import os
from unittest import mock

import pytest

from rtvm.core.models import ActivationState, Provenance
from rtvm.core.registry import VersionAlreadyInstalledError
from rtvm.core.resolver import (
    AliasResolutionDangling,
    InvalidVersionSyntax,
    VersionNotInstalled,
)
from rtvm.core.tool_plugin import ToolNotFoundError, ToolPlugin
from rtvm.core.version_manager import CommandExecutionError, VersionInUseError


@pytest.fixture
def jdks(make_install):
    return {version: make_install("java", version) for version in ("21.0.7", "17.0.9")}


def test_switch_version_walks_through_states(manager, jdks):
    outcome = manager.switch_version("java", "21")

    assert outcome.state == ActivationState.ACTIVATED
    assert outcome.history == [
        ActivationState.IDLE,
        ActivationState.PARSING,
        ActivationState.RESOLVING,
        ActivationState.RESOLVED,
        ActivationState.ACTIVATING,
    ]
    assert outcome.installed.raw == "21.0.7"
    assert outcome.mutation.home_var == ("JAVA_HOME", str(jdks["21.0.7"]))
    assert manager.current_version("java").raw == "21.0.7"


def test_failed_switch_is_recorded(manager, jdks):
    with pytest.raises(VersionNotInstalled):
        manager.switch_version("java", "11")

    outcome = manager.last_outcome
    assert outcome.state == ActivationState.FAILED
    assert outcome.history[-1] == ActivationState.RESOLVING
    assert manager.current_version("java") is None


def test_invalid_syntax_fails_while_parsing(manager, jdks):
    with pytest.raises(InvalidVersionSyntax):
        manager.switch_version("java", "21 && echo")
    assert manager.last_outcome.history[-1] == ActivationState.PARSING


def test_unknown_tool(manager):
    with pytest.raises(ToolNotFoundError):
        manager.switch_version("ruby", "3")


def test_auto_switch_uses_project_file(manager, jdks, project_dir):
    assert manager.auto_switch("java", project_dir) is None

    (project_dir / ".java-version").write_text("17\n", encoding="utf-8")
    outcome = manager.auto_switch("java", project_dir)
    assert outcome.installed.raw == "17.0.9"
    assert manager.current_version("java").raw == "17.0.9"


def test_shell_env_prefers_project_file_then_default(manager, jdks, project_dir):
    assert manager.shell_env("java", project_dir) is None

    manager.set_alias("java", "default", "21.0.7")
    mutation = manager.shell_env("java", project_dir)
    assert mutation.home_var[1] == str(jdks["21.0.7"])

    (project_dir / ".java-version").write_text("17.0.9\n", encoding="utf-8")
    mutation = manager.shell_env("java", project_dir)
    assert mutation.home_var[1] == str(jdks["17.0.9"])


def test_shell_env_ignores_and_keeps_current(manager, jdks, project_dir):
    manager.set_alias("java", "default", "21.0.7")
    manager.switch_version("java", "17")

    mutation = manager.shell_env("java", project_dir)

    assert mutation.home_var[1] == str(jdks["21.0.7"])
    assert manager.current_version("java").raw == "17.0.9"


def test_which_reports_source(manager, jdks, project_dir):
    assert manager.which("java", project_dir) is None

    manager.set_alias("java", "default", "17.0.9")
    selection = manager.which("java", project_dir)
    assert selection["source"] == "default"
    assert selection["installed"].raw == "17.0.9"

    (project_dir / ".java-version").write_text("21\n", encoding="utf-8")
    selection = manager.which("java", project_dir)
    assert selection["source"] == "project"
    assert selection["marker"].endswith(".java-version")
    assert selection["spec"] == "21"
    assert selection["installed"].raw == "21.0.7"


def test_list_versions_marks_current_and_aliases(manager, jdks):
    manager.switch_version("java", "21")
    manager.set_alias("java", "default", "21.0.7")
    manager.set_alias("java", "legacy", "17.0.9")

    versions = {v["version"]: v for v in manager.list_versions("java")}

    assert versions["21.0.7"]["current"] is True
    assert versions["21.0.7"]["aliases"] == ["default"]
    assert versions["17.0.9"]["current"] is False
    assert versions["17.0.9"]["aliases"] == ["legacy"]


def test_uninstall_refuses_current_without_force(manager, jdks):
    manager.switch_version("java", "21")

    with pytest.raises(VersionInUseError):
        manager.uninstall("java", "21.0.7")
    assert jdks["21.0.7"].exists()

    manager.uninstall("java", "21.0.7", force=True)
    assert not jdks["21.0.7"].exists()
    assert manager.current_version("java") is None


def test_uninstall_leaves_dangling_alias(manager, jdks):
    manager.set_alias("java", "default", "17.0.9")
    manager.uninstall("java", "17.0.9")

    assert manager.list_aliases("java") == {"default": "17.0.9"}
    with pytest.raises(AliasResolutionDangling):
        manager.switch_version("java", "default")


def test_uninstall_requires_exact_version(manager, jdks):
    with pytest.raises(VersionNotInstalled):
        manager.uninstall("java", "21")


def test_import_then_uninstall_keeps_source(manager, make_external):
    source = make_external("node", "node-v18.20.3-linux-x64")

    installed = manager.import_version("node", source, "18.20.3")
    assert installed.provenance == Provenance.IMPORTED
    assert manager.switch_version("node", "18").installed.raw == "18.20.3"

    removed = manager.uninstall("node", "18.20.3", force=True)
    assert removed.provenance == Provenance.IMPORTED
    assert (source / "bin" / "node").is_file()


def test_write_local(manager, project_dir):
    marker = manager.write_local("node", "lts/*", project_dir)
    assert marker.read_text(encoding="utf-8") == "lts/*\n"

    with pytest.raises(InvalidVersionSyntax):
        manager.write_local("node", "", project_dir)


def test_install_skips_already_installed(manager, jdks, monkeypatch):
    monkeypatch.setattr(
        manager.remote_fetcher,
        "resolve_spec",
        lambda tool, spec: {"version": "21.0.7", "download_url": "https://example.invalid/jdk.zip"},
    )
    with pytest.raises(VersionAlreadyInstalledError):
        manager.install_version("java", "21.0.7")


def test_install_downloads_resolved_version(manager, monkeypatch):
    calls = []
    monkeypatch.setattr(
        manager.remote_fetcher,
        "resolve_spec",
        lambda tool, spec: {"version": "20.15.0", "download_url": "https://example.invalid/node.tar.gz"},
    )
    monkeypatch.setattr(
        manager.download_manager,
        "download_version",
        lambda tool, version, url, progress=None: calls.append((tool, version, url)) or "installed",
    )

    assert manager.install_version("node", "lts") == "installed"
    assert calls == [("node", "20.15.0", "https://example.invalid/node.tar.gz")]


def test_list_tools(manager):
    tools = {t["tool"]: t for t in manager.list_tools()}
    assert set(tools) == {"java", "node", "python"}
    assert tools["node"]["marker_files"] == [".nvmrc", ".node-version"]


def test_detect_and_import_detected(manager, make_external, tmp_path, monkeypatch):
    make_external("node", "node-v20.11.1-linux-x64")
    make_external("node", "node-custom")
    monkeypatch.setattr(ToolPlugin, "detect_paths", property(lambda self: [tmp_path / "external"]))
    monkeypatch.setattr(ToolPlugin, "detect_version", lambda self, path: None)

    detected = manager.detect_installations("node", environ={})
    assert [d.version for d in detected] == [None, "20.11.1"]

    imported, skipped = manager.import_detected(detected)
    assert [v.raw for v in imported] == ["20.11.1"]
    assert imported[0].provenance == Provenance.IMPORTED
    assert [d.path for d in skipped] == [detected[0].path]

    again = manager.detect_installations("node", environ={})
    assert [d.registered for d in again] == [None, "20.11.1"]
    assert manager.import_detected(again)[0] == []


def test_exec_runs_command_with_selected_version(manager, jdks, monkeypatch):
    java = jdks["17.0.9"] / "bin" / "java"
    java.chmod(0o755)
    run = mock.Mock(return_value=mock.Mock(returncode=3))
    monkeypatch.setattr("rtvm.core.version_manager.subprocess.run", run)
    manager.switch_version("java", "21")

    code = manager.exec_command("java", "17", ["java", "-version"], environ={"PATH": "/usr/bin", "LANG": "C"})

    assert code == 3
    (argv,), kwargs = run.call_args
    assert argv == [str(java), "-version"]
    env = kwargs["env"]
    assert env["JAVA_HOME"] == str(jdks["17.0.9"])
    assert env["PATH"].split(os.pathsep) == [str(jdks["17.0.9"] / "bin"), "/usr/bin"]
    assert env["LANG"] == "C"
    assert manager.current_version("java").raw == "21.0.7"


def test_exec_failures(manager, jdks, monkeypatch):
    run = mock.Mock(side_effect=FileNotFoundError("no such file"))
    monkeypatch.setattr("rtvm.core.version_manager.subprocess.run", run)

    with pytest.raises(VersionNotInstalled):
        manager.exec_command("java", "11", ["java", "-version"])
    with pytest.raises(CommandExecutionError):
        manager.exec_command("java", "21", [])
    assert run.call_count == 0

    with pytest.raises(CommandExecutionError):
        manager.exec_command("java", "21", ["missing-tool"])
