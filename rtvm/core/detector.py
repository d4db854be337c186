"""
本机安装探测模块。

在 HOME 环境变量、PATH 和各系统的常见安装目录中查找工具安装，
供用户一次性导入到 rtvm 中。只读扫描，不修改任何文件。
"""

import os
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from rtvm.core.config_manager import ConfigManager
from rtvm.core.models import DetectedInstallation
from rtvm.core.registry import InstallationRegistry
from rtvm.core.tool_plugin import PluginRegistry, ToolPlugin
from rtvm.utils.logger import get_logger

logger = get_logger()


class InstallationDetector:
    """
    工具安装探测器。

    同一目录经由多个来源被发现时只保留第一次（按 env、path、common 的顺序），
    rtvm 数据目录中的安装不会出现在结果里。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        plugins: PluginRegistry,
        registry: InstallationRegistry,
    ):
        self.config_manager = config_manager
        self.plugins = plugins
        self.registry = registry

    def detect(self, tool: str, environ: Optional[Mapping[str, str]] = None) -> List[DetectedInstallation]:
        """
        探测本机上的工具安装。

        参数:
            tool: 工具名称
            environ: 用于读取 HOME 变量和 PATH 的环境，默认为当前进程环境

        返回:
            探测到的安装列表，按发现顺序排列
        """
        plugin = self.plugins.get(tool)
        environ = os.environ if environ is None else environ

        versions_root = os.path.realpath(self.config_manager.tool_versions_dir(plugin.tool))
        registered = self._registered_targets(plugin.tool)

        seen = set()
        detected = []
        for source, candidate in self._candidates(plugin, environ):
            try:
                if not plugin.validate_installation(candidate):
                    continue
            except OSError as e:
                logger.debug(f"跳过无法访问的目录 {candidate}: {e}")
                continue
            real_path = _bundle_root(plugin, os.path.realpath(candidate))
            if real_path in seen or _is_within(real_path, versions_root):
                continue
            seen.add(real_path)

            version = plugin.detect_version(Path(real_path)) or \
                plugin.guess_version_from_name(Path(real_path).name)
            logger.debug(f"发现 {plugin.tool} 安装 ({source}): {real_path} -> {version}")
            detected.append(DetectedInstallation(
                tool=plugin.tool,
                path=real_path,
                version=version,
                source=source,
                registered=registered.get(real_path),
            ))

        logger.info(f"共发现 {len(detected)} 个 {plugin.tool} 安装")
        return detected

    def _registered_targets(self, tool: str) -> Dict[str, str]:
        """已导入版本的真实路径到版本号的映射。"""
        return {os.path.realpath(v.path): v.raw for v in self.registry.list(tool)}

    def _candidates(self, plugin: ToolPlugin, environ: Mapping[str, str]) -> Iterator[Tuple[str, Path]]:
        home = environ.get(plugin.home_var)
        if home:
            yield "env", Path(home).expanduser()

        for directory in (environ.get("PATH") or "").split(os.pathsep):
            if directory:
                yield from (("path", root) for root in self._roots_from_path_dir(plugin, Path(directory)))

        for base in plugin.detect_paths:
            yield from (("common", path) for path in _dir_and_children(base))

    @staticmethod
    def _roots_from_path_dir(plugin: ToolPlugin, directory: Path) -> Iterator[Path]:
        """
        由 PATH 目录中的可执行文件反推安装根目录。

        探测文件 bin/java 对应 <root>/bin/java，解析符号链接后向上两级即为根目录。
        """
        for probe in plugin.probe_files:
            parts = Path(probe).parts
            executable = directory / parts[-1]
            try:
                if not executable.is_file():
                    continue
                resolved = executable.resolve()
            except OSError as e:
                logger.debug(f"跳过 {executable}: {e}")
                continue
            if len(parts) <= len(resolved.parents):
                yield resolved.parents[len(parts) - 1]
                return


def _dir_and_children(base: Path) -> Iterator[Path]:
    try:
        if not base.is_dir():
            return
        children = sorted(base.iterdir())
    except OSError as e:
        logger.warning(f"无法读取 {base}: {e}")
        return

    yield base
    for child in children:
        if not child.name.startswith("."):
            yield child


def _bundle_root(plugin: ToolPlugin, path: str) -> str:
    """把 macOS JDK 的 Contents/Home 归一到 .jdk 包目录。"""
    for subdir in plugin.template.get("home_subdirs", []):
        suffix = os.sep + os.path.normpath(subdir)
        if path.endswith(suffix) and plugin.validate_installation(Path(path[:-len(suffix)])):
            return path[:-len(suffix)]
    return path


def _is_within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)
