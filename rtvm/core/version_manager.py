"""
版本管理器模块。

协调版本需求解析、安装注册表、别名存储、项目版本文件和激活器，
提供切换、自动切换、新 shell 初始化、别名管理、安装、导入、卸载、
本机安装探测以及以指定版本临时执行命令的功能。
"""

import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from rtvm.core.activator import Activator
from rtvm.core.alias_store import AliasStore
from rtvm.core.config_manager import ConfigManager
from rtvm.core.detector import InstallationDetector
from rtvm.core.download_manager import DownloadManager
from rtvm.core.models import (
    ActivationOutcome,
    ActivationState,
    AliasSpec,
    DetectedInstallation,
    EnvironmentMutation,
    InstalledVersion,
    VersionSpec,
)
from rtvm.core.project_file import ProjectFileReader
from rtvm.core.registry import InstallationRegistry, RegistryError, VersionAlreadyInstalledError
from rtvm.core.remote_fetcher import RemoteFetcher
from rtvm.core.resolver import (
    InvalidVersionSyntax,
    Resolver,
    VersionManagerError,
    VersionNotInstalled,
)
from rtvm.core.tool_plugin import PluginRegistry, ToolPlugin
from rtvm.utils.input_validator import InputValidator, InputValidationError
from rtvm.utils.logger import get_logger

logger = get_logger()

CURRENT_ALIAS = "current"
DEFAULT_ALIAS = "default"


class VersionInUseError(VersionManagerError):
    """要卸载的版本是当前激活的版本。"""

    def __init__(self, tool: str, raw: str):
        super().__init__(
            f"{tool} {raw} 是当前激活的版本",
            f"先运行 rtvm use {tool} <其他版本> 切换，或使用 --force 强制卸载",
        )


class CommandExecutionError(VersionManagerError):
    """无法启动 exec 要执行的命令。"""
    pass


class VersionManager:
    """
    版本管理器类。

    本类作为协调者，将具体工作委托给各个专用模块。
    """

    def __init__(self, config_manager: Optional[ConfigManager] = None, windows: Optional[bool] = None):
        """
        初始化版本管理器。

        参数:
            config_manager: 配置管理器实例，默认使用 RTVM_DIR 下的配置
            windows: 是否按 Windows 布局计算可执行目录，默认按当前系统判断
        """
        self.config_manager = config_manager or ConfigManager()

        self.remote_fetcher = RemoteFetcher(self.config_manager)
        self.plugins = PluginRegistry(self.config_manager, self.remote_fetcher, windows=windows)
        self.registry = InstallationRegistry(self.config_manager, self.plugins)
        self.alias_store = AliasStore(self.config_manager, self.registry)
        self.resolver = Resolver(self.registry, self.alias_store)
        self.project_files = ProjectFileReader(
            self.plugins, search_parents=self.config_manager.get_search_parent_dirs()
        )
        self.activator = Activator(self.config_manager, self.plugins, self.alias_store)
        self.download_manager = DownloadManager(self.config_manager, self.registry, self.plugins)
        self.detector = InstallationDetector(self.config_manager, self.plugins, self.registry)

        self.last_outcome: Optional[ActivationOutcome] = None

    def get_plugin(self, tool: str) -> ToolPlugin:
        """获取工具插件，工具不存在时抛出 ToolNotFoundError。"""
        return self.plugins.get(tool)

    def list_tools(self) -> List[Dict[str, Any]]:
        """列出所有支持的工具。"""
        tools = []
        for name in self.plugins.tools():
            plugin = self.plugins.get(name)
            tools.append({
                "tool": name,
                "display_name": plugin.display_name,
                "home_var": plugin.home_var,
                "marker_files": plugin.marker_files,
            })
        return tools

    def parse_version(self, tool: str, raw: str) -> VersionSpec:
        """
        校验并解析用户输入的版本字符串。

        抛出:
            InvalidVersionSyntax: 版本字符串为空或包含非法字符
        """
        try:
            InputValidator.validate_version_string(raw)
        except InputValidationError as e:
            raise InvalidVersionSyntax(raw or "", str(e)) from e
        return self.get_plugin(tool).parse_version(raw)

    def switch_version(self, tool: str, raw: str) -> ActivationOutcome:
        """
        切换到指定版本：解析、匹配已安装版本、激活。

        参数:
            tool: 工具名称
            raw: 版本字符串，可以是部分版本号、完整版本号或别名

        返回:
            激活结果，包含需要应用的环境变量变更

        抛出:
            ResolutionError / ActivationError: 失败时 last_outcome 的状态为 FAILED
        """
        logger.info(f"正在切换 {tool} 到版本 {raw}")
        return self._activate(tool, raw)

    def auto_switch(self, tool: str, directory: Optional[Path] = None) -> Optional[ActivationOutcome]:
        """
        根据目录中的项目版本文件自动切换版本。

        参数:
            tool: 工具名称
            directory: 项目目录，默认为当前目录

        返回:
            激活结果；目录中没有版本文件时返回 None
        """
        located = self.project_files.locate(tool, directory or Path.cwd())
        if located is None:
            logger.debug(f"{directory or Path.cwd()} 中没有 {tool} 版本文件")
            return None

        marker, raw = located
        logger.info(f"根据 {marker} 切换 {tool} 到版本 {raw}")
        return self._activate(tool, raw)

    def _activate(self, tool: str, raw: str) -> ActivationOutcome:
        outcome = ActivationOutcome(tool=tool, raw_spec=raw)
        self.last_outcome = outcome

        try:
            outcome.advance(ActivationState.PARSING)
            outcome.spec = self.parse_version(tool, raw)

            outcome.advance(ActivationState.RESOLVING)
            outcome.installed = self.resolver.resolve(tool, outcome.spec)
            outcome.advance(ActivationState.RESOLVED)

            outcome.advance(ActivationState.ACTIVATING)
            outcome.mutation = self.activator.activate(outcome.installed)
            outcome.advance(ActivationState.ACTIVATED)
        except Exception as e:
            outcome.advance(ActivationState.FAILED)
            logger.error(f"切换 {tool} 到 {raw} 失败: {e}")
            raise

        logger.info(f"已切换 {tool} 到版本 {outcome.installed.raw}")
        return outcome

    def _select_spec(
        self, tool: str, directory: Optional[Path]
    ) -> Optional[Tuple[str, VersionSpec, Optional[Path]]]:
        located = self.project_files.locate(tool, directory or Path.cwd())
        if located is not None:
            marker, raw = located
            return "project", self.parse_version(tool, raw), marker

        if self.alias_store.get(tool, DEFAULT_ALIAS) is not None:
            return DEFAULT_ALIAS, AliasSpec(name=DEFAULT_ALIAS, raw=DEFAULT_ALIAS), None
        return None

    def shell_env(self, tool: str, directory: Optional[Path] = None) -> Optional[EnvironmentMutation]:
        """
        计算新 shell 的环境变量：项目版本文件优先，其次 default 别名。

        current 只记录最近一次 use，不参与新 shell 的选择，
        本方法也不会改写 current。

        参数:
            tool: 工具名称
            directory: 工作目录，默认为当前目录

        返回:
            环境变量变更；既没有版本文件也没有 default 别名时返回 None
        """
        selected = self._select_spec(tool, directory)
        if selected is None:
            return None
        _, spec, _ = selected
        installed = self.resolver.resolve(tool, spec)
        return self.activator.compute_mutation(installed)

    def which(self, tool: str, directory: Optional[Path] = None) -> Optional[Dict[str, Any]]:
        """
        说明在目录中会选用哪个版本及其来源。

        返回:
            包含 source、marker、spec、installed 的字典；没有任何来源时返回 None
        """
        selected = self._select_spec(tool, directory)
        if selected is None:
            return None
        source, spec, marker = selected
        return {
            "source": source,
            "marker": str(marker) if marker else None,
            "spec": spec.raw,
            "installed": self.resolver.resolve(tool, spec),
        }

    def current_version(self, tool: str) -> Optional[InstalledVersion]:
        """
        获取 current 别名指向的已安装版本。

        返回:
            已安装版本；未设置或已被卸载时返回 None
        """
        self.get_plugin(tool)
        target = self.alias_store.get(tool, CURRENT_ALIAS)
        if target is None:
            return None
        installed = self.registry.get(tool, target)
        if installed is None:
            logger.warning(f"{tool} 的 current 指向的版本 {target} 已不存在")
        return installed

    def list_versions(self, tool: str) -> List[Dict[str, Any]]:
        """
        列出已安装版本，附带 current 标记和指向该版本的别名。

        参数:
            tool: 工具名称

        返回:
            版本信息列表，按版本降序
        """
        aliases = self.alias_store.list(self.get_plugin(tool).tool)
        current = aliases.get(CURRENT_ALIAS)

        versions = []
        for installed in self.registry.list(tool):
            info = installed.to_dict()
            info["current"] = installed.raw == current
            info["aliases"] = sorted(
                name for name, target in aliases.items()
                if target == installed.raw and name != CURRENT_ALIAS
            )
            versions.append(info)
        return versions

    def list_remote_versions(self, tool: str, use_cache: bool = True) -> List[Dict[str, Any]]:
        """获取远程可用版本，并标记已安装的版本。"""
        installed = {v.raw for v in self.registry.list(tool)}
        versions = []
        for entry in self.get_plugin(tool).list_remote_versions(use_cache=use_cache):
            entry = dict(entry)
            entry["installed"] = entry["version"] in installed
            versions.append(entry)
        return versions

    def set_alias(self, tool: str, name: str, version: str) -> None:
        """设置别名，目标必须是已安装的具体版本。"""
        self.alias_store.set(self.get_plugin(tool).tool, name, version)

    def remove_alias(self, tool: str, name: str) -> None:
        """删除别名。"""
        self.alias_store.remove(self.get_plugin(tool).tool, name)

    def list_aliases(self, tool: str) -> Dict[str, str]:
        """列出工具的所有别名。"""
        return self.alias_store.list(self.get_plugin(tool).tool)

    def write_local(self, tool: str, raw: str, directory: Optional[Path] = None) -> Path:
        """在项目目录中写入版本文件。"""
        self.parse_version(tool, raw)
        return self.project_files.write(tool, directory or Path.cwd(), raw)

    def uninstall(self, tool: str, raw: str, force: bool = False) -> InstalledVersion:
        """
        卸载一个已安装版本。

        必须给出完整的原始版本字符串；指向该版本的别名保持不变，
        之后解析时会报告为悬空别名。

        参数:
            tool: 工具名称
            raw: 已安装版本的原始字符串
            force: 是否允许卸载当前激活的版本

        返回:
            被卸载的版本

        抛出:
            VersionNotInstalled: 版本未安装
            VersionInUseError: 版本是 current 且未指定 force
        """
        tool = self.get_plugin(tool).tool
        installed = self.registry.get(tool, raw)
        if installed is None:
            raise VersionNotInstalled(tool, raw)

        if self.alias_store.get(tool, CURRENT_ALIAS) == raw and not force:
            raise VersionInUseError(tool, raw)

        self.registry.remove(installed)

        dangling = [name for name, target in self.alias_store.list(tool).items() if target == raw]
        if dangling:
            logger.warning(f"以下 {tool} 别名指向已卸载的 {raw}: {', '.join(dangling)}")
        return installed

    def import_version(self, tool: str, path: Path, version: Optional[str] = None) -> InstalledVersion:
        """导入一个已存在的外部安装，只创建链接，不复制文件。"""
        return self.registry.import_installation(tool, path, version)

    def detect_installations(
        self, tool: str, environ: Optional[Mapping[str, str]] = None
    ) -> List[DetectedInstallation]:
        """
        探测本机上尚未由 rtvm 管理的工具安装。

        参数:
            tool: 工具名称
            environ: 读取 HOME 变量和 PATH 的环境，默认为当前进程环境

        返回:
            探测到的安装列表；已导入的条目带有 registered 版本号
        """
        return self.detector.detect(self.get_plugin(tool).tool, environ)

    def import_detected(
        self, detected: List[DetectedInstallation]
    ) -> Tuple[List[InstalledVersion], List[DetectedInstallation]]:
        """
        导入探测到的安装。

        已导入、无法确定版本或与已有版本同名的条目会被跳过，
        单个条目失败不影响其余条目。

        参数:
            detected: detect_installations 的结果

        返回:
            (已导入的版本列表, 被跳过的条目列表)
        """
        imported = []
        skipped = []
        for item in detected:
            if item.registered or not item.version:
                skipped.append(item)
                continue
            try:
                imported.append(self.registry.import_installation(item.tool, Path(item.path), item.version))
            except RegistryError as e:
                logger.warning(f"跳过 {item.path}: {e}")
                skipped.append(item)
        return imported, skipped

    def exec_command(
        self,
        tool: str,
        raw: str,
        command: Sequence[str],
        environ: Optional[Mapping[str, str]] = None,
    ) -> int:
        """
        以指定版本的环境运行一条命令。

        只修改子进程的环境，不改写 current，也不影响调用方的 shell。

        参数:
            tool: 工具名称
            raw: 版本需求
            command: 命令及其参数
            environ: 基础环境，默认为当前进程环境

        返回:
            命令的退出码

        抛出:
            ResolutionError: 版本无法解析为已安装版本
            CommandExecutionError: 命令为空或无法启动
        """
        if not command:
            raise CommandExecutionError(
                "缺少要执行的命令", f"用法: rtvm exec {tool} {raw} -- <命令> [参数...]"
            )

        installed = self.resolver.resolve(tool, self.parse_version(tool, raw))
        mutation = self.activator.compute_mutation(installed)
        env = mutation.apply_to_environ(os.environ if environ is None else environ)

        path_value = next((v for k, v in env.items() if k.upper() == "PATH"), None)
        executable = shutil.which(command[0], path=path_value) or command[0]
        logger.info(f"使用 {tool} {installed.raw} 执行: {' '.join(command)}")
        try:
            result = subprocess.run([executable, *command[1:]], env=env)
        except OSError as e:
            raise CommandExecutionError(
                f"无法执行 {command[0]}: {e}", "确认命令存在且可执行"
            ) from e
        return result.returncode

    def resolve_remote(self, tool: str, raw: str) -> Dict[str, Any]:
        """
        在远程版本目录中解析版本需求（包括 lts、latest）。

        与本地解析器分开，只在安装等明确需要联网的操作中使用。
        """
        return self.remote_fetcher.resolve_spec(tool, self.parse_version(tool, raw))

    def install_version(
        self,
        tool: str,
        raw: str,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> InstalledVersion:
        """
        下载并安装满足需求的最新远程版本。

        参数:
            tool: 工具名称
            raw: 版本需求，如 21、20.11、lts、latest
            progress_callback: 下载进度回调函数

        返回:
            新安装的版本
        """
        tool = self.get_plugin(tool).tool
        entry = self.resolve_remote(tool, raw)
        version = entry["version"]

        existing = self.registry.get(tool, version)
        if existing is not None:
            raise VersionAlreadyInstalledError(f"{tool} {version} 已安装: {existing.path}")

        download_url = entry.get("download_url") or \
            self.remote_fetcher.find_distribution(tool, version)["download_url"]
        logger.info(f"{tool} {raw} 解析为远程版本 {version}")
        return self.download_manager.download_version(tool, version, download_url, progress_callback)
