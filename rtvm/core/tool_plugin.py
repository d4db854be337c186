"""
工具插件模块。

每个工具（java、node、python）以配置模板描述自己的能力：版本解析、
安装结构探测、HOME 目录、可执行目录、项目版本文件名以及远程版本目录。
解析器、激活器和安装注册表都通过插件多态地使用这些能力。
"""

import os
import platform
import re
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

from rtvm.core.interfaces import IConfigManager, IRemoteFetcher, IToolPlugin
from rtvm.core.models import VersionSpec
from rtvm.core.version_utils import parse_spec
from rtvm.utils.input_validator import InputValidator, InputValidationError
from rtvm.utils.logger import get_logger

logger = get_logger()

VERSION_CMD_TIMEOUT = 10

_FOLDER_VERSION_PATTERN = re.compile(r'(\d+(?:\.\d+){0,2}(?:[+_]\d+)?)')


class ToolPluginError(Exception):
    """工具插件错误异常。"""
    pass


class ToolNotFoundError(ToolPluginError):
    """工具未找到错误异常。"""

    def __init__(self, tool: str, available: Optional[List[str]] = None):
        self.tool = tool
        self.available = available or []
        hint = f"，可用工具: {', '.join(self.available)}" if self.available else ""
        super().__init__(f"不支持的工具: {tool}{hint}")
        self.remediation = "运行 rtvm tools 查看支持的工具"


def current_os() -> str:
    """返回当前操作系统标识: windows、darwin 或 linux。"""
    system = platform.system().lower()
    if system.startswith("win"):
        return "windows"
    if system == "darwin":
        return "darwin"
    return "linux"


def current_arch() -> str:
    """返回当前 CPU 架构标识: x64、arm64 或 x86。"""
    machine = platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        return "x64"
    if machine in ("aarch64", "arm64"):
        return "arm64"
    if machine in ("i386", "i686", "x86"):
        return "x86"
    return machine


class ToolPlugin(IToolPlugin):
    """
    由配置模板构建的工具插件。

    远程版本相关能力委托给 RemoteFetcher。
    """

    def __init__(
        self,
        tool: str,
        template: Dict[str, Any],
        remote_fetcher: Optional[IRemoteFetcher] = None,
        windows: Optional[bool] = None,
    ):
        """
        初始化工具插件。

        参数:
            tool: 工具名称
            template: 工具配置模板
            remote_fetcher: 远程版本获取器
            windows: 是否按 Windows 布局计算可执行目录，默认按当前系统判断
        """
        self.tool = tool
        self.template = template
        self.remote_fetcher = remote_fetcher
        self.windows = (os.name == "nt") if windows is None else windows

    @property
    def display_name(self) -> str:
        return self.template.get("display_name", self.tool)

    @property
    def home_var(self) -> str:
        env_rule = self.template.get("env_rule", {})
        return env_rule.get("home_var") or f"{self.tool.upper()}_HOME"

    @property
    def marker_files(self) -> List[str]:
        """项目版本文件名，按优先级排列。"""
        return list(self.template.get("marker_files") or [f".{self.tool}-version"])

    @property
    def probe_files(self) -> List[str]:
        return list(self.template.get("probe_files", []))

    @property
    def detect_paths(self) -> List[Path]:
        """本机常见安装位置，已展开 ~ 和环境变量。"""
        os_key = "windows" if self.windows else current_os()
        paths = (self.template.get("detect_paths") or {}).get(os_key, [])
        return [Path(os.path.expandvars(os.path.expanduser(p))) for p in paths]

    def parse_version(self, raw: str) -> VersionSpec:
        return parse_spec(raw)

    def validate_installation(self, path: Path) -> bool:
        """
        判断目录是否像一个有效的工具安装。

        只检查模板中的探测文件是否存在，不执行任何程序。

        参数:
            path: 安装目录

        返回:
            有效返回 True，否则返回 False
        """
        path = Path(path)
        if not path.is_dir():
            return False
        if not self.probe_files:
            return True
        return any((path / probe).is_file() for probe in self.probe_files)

    def home_path(self, install_path: Path) -> Path:
        """
        获取工具的 HOME 目录。

        macOS 的 JDK 包的 HOME 位于 Contents/Home 下。
        """
        install_path = Path(install_path)
        for subdir in self.template.get("home_subdirs", []):
            candidate = install_path / subdir
            if candidate.is_dir():
                return candidate
        return install_path

    def path_entries(self, install_path: Path) -> List[Path]:
        """
        获取需要加入 PATH 的可执行文件目录。

        空字符串表示 HOME 目录本身；不存在的目录会被跳过，
        但至少返回第一项。

        参数:
            install_path: 安装目录

        返回:
            目录列表，按 PATH 中的先后顺序
        """
        env_rule = self.template.get("env_rule", {})
        key = "path_entries_windows" if self.windows else "path_entries"
        entries = env_rule.get(key, env_rule.get("path_entries", ["bin"]))

        home = self.home_path(install_path)
        candidates = [home / entry if entry else home for entry in entries]
        existing = [c for c in candidates if c.is_dir()]
        if existing:
            return existing
        return candidates[:1]

    def list_remote_versions(self, use_cache: bool = True) -> List[Dict[str, Any]]:
        return self._require_fetcher().get_remote_versions(self.tool, use_cache=use_cache)

    def find_distribution(self, version: str) -> Dict[str, Any]:
        return self._require_fetcher().find_distribution(self.tool, version)

    def _require_fetcher(self) -> IRemoteFetcher:
        if self.remote_fetcher is None:
            raise ToolPluginError(f"{self.tool} 未配置远程版本获取器")
        return self.remote_fetcher

    def detect_version(self, install_path: Path) -> Optional[str]:
        """
        通过执行版本命令获取工具版本。

        参数:
            install_path: 工具安装路径

        返回:
            版本字符串，获取失败返回 None
        """
        version_cmd = self.template.get("version_cmd") or {}
        pattern = version_cmd.get("pattern")
        if not pattern:
            logger.debug(f"未配置 {self.tool} 的版本命令")
            return None

        for relative in version_cmd.get("executables", []):
            executable = Path(install_path) / relative
            if not executable.is_file():
                continue

            cmd = [str(executable)] + list(version_cmd.get("args", ["--version"]))
            logger.debug(f"执行命令获取 {self.tool} 版本: {cmd}")
            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=VERSION_CMD_TIMEOUT,
                )
            except subprocess.TimeoutExpired:
                logger.warning(f"获取 {self.tool} 版本超时 ({VERSION_CMD_TIMEOUT}秒)")
                return None
            except OSError as e:
                logger.warning(f"无法执行 {executable}: {e}")
                continue

            output = (result.stdout or "") + (result.stderr or "")
            match = re.search(pattern, output, re.IGNORECASE)
            if match:
                version = match.group(1)
                logger.debug(f"成功获取 {self.tool} 版本: {version}")
                return version

        logger.debug(f"无法从输出中解析 {self.tool} 版本")
        return None

    def guess_version_from_name(self, folder_name: str) -> Optional[str]:
        """
        从目录名中提取版本号，如 jdk-21.0.7+6 -> 21.0.7+6。

        参数:
            folder_name: 目录名

        返回:
            版本字符串，无法提取返回 None
        """
        match = _FOLDER_VERSION_PATTERN.search(folder_name)
        return match.group(1) if match else None


class PluginRegistry:
    """工具名称到插件实例的映射，基于配置中的工具模板构建。"""

    def __init__(
        self,
        config_manager: IConfigManager,
        remote_fetcher: Optional[IRemoteFetcher] = None,
        windows: Optional[bool] = None,
    ):
        self.config_manager = config_manager
        self.remote_fetcher = remote_fetcher
        self.windows = windows
        self._plugins: Dict[str, ToolPlugin] = {}

    def tools(self) -> List[str]:
        """返回所有支持的工具名称，按字母排序。"""
        return sorted(self.config_manager.get_tool_templates().keys())

    def get(self, tool: str) -> ToolPlugin:
        """
        获取工具插件。

        参数:
            tool: 工具名称

        返回:
            ToolPlugin 实例

        抛出:
            ToolNotFoundError: 工具名称无效或没有对应模板
        """
        try:
            InputValidator.validate_tool_name(tool)
        except InputValidationError:
            raise ToolNotFoundError(tool, self.tools()) from None

        tool = InputValidator.sanitize_tool_name(tool)
        if tool in self._plugins:
            return self._plugins[tool]

        template = self.config_manager.get_tool_template(tool)
        if not template:
            raise ToolNotFoundError(tool, self.tools())

        plugin = ToolPlugin(tool, template, self.remote_fetcher, windows=self.windows)
        self._plugins[tool] = plugin
        return plugin
