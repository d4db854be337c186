import os
import tempfile

# 日志记录器在模块导入时创建，必须在导入 rtvm 之前把数据目录指向临时目录
os.environ["RTVM_DIR"] = tempfile.mkdtemp(prefix="rtvm-test-")

from pathlib import Path  # noqa: E402

import pytest  # noqa: E402

from rtvm.core.config_manager import ConfigManager  # noqa: E402
from rtvm.core.version_manager import VersionManager  # noqa: E402

PROBES = {
    "java": "bin/java",
    "node": "bin/node",
    "python": "bin/python3",
}


def write_probe(home: Path, tool: str) -> Path:
    """在目录中创建工具的探测文件，使其看起来像一个有效安装。"""
    probe = home / PROBES[tool]
    probe.parent.mkdir(parents=True, exist_ok=True)
    probe.write_text("#!/bin/sh\n", encoding="utf-8")
    return home


@pytest.fixture
def config_manager(tmp_path):
    return ConfigManager(root_dir=tmp_path / "rtvm")


@pytest.fixture
def make_install(config_manager):
    """在 versions/<tool>/<version> 下创建一个托管安装。"""

    def _make(tool: str, version: str) -> Path:
        return write_probe(config_manager.tool_versions_dir(tool) / version, tool)

    return _make


@pytest.fixture
def make_external(tmp_path):
    """在数据目录之外创建一个外部安装，供导入使用。"""

    def _make(tool: str, name: str) -> Path:
        return write_probe(tmp_path / "external" / name, tool)

    return _make


@pytest.fixture
def manager(config_manager):
    return VersionManager(config_manager, windows=False)


@pytest.fixture
def project_dir(tmp_path):
    directory = tmp_path / "project"
    directory.mkdir()
    return directory
