"""
安装注册表模块。

扫描 versions/<tool>/ 下的已安装版本，负责导入外部安装和安全删除。
托管安装是真实目录，导入的安装是指向外部路径的符号链接。
"""

import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from rtvm.core.config_manager import ConfigManager
from rtvm.core.interfaces import IInstallationRegistry
from rtvm.core.models import InstalledVersion, Provenance
from rtvm.core.tool_plugin import PluginRegistry
from rtvm.core.version_utils import parse_installed_version, sort_installed_desc
from rtvm.utils.input_validator import InputValidator, InputValidationError
from rtvm.utils.logger import get_logger

logger = get_logger()


class RegistryError(Exception):
    """安装注册表错误异常。"""
    pass


class VersionAlreadyInstalledError(RegistryError):
    """版本已存在错误异常。"""
    pass


class UnsafeRemovalError(RegistryError):
    """拒绝删除不属于本工具管理的路径。"""
    pass


class InstallationRegistry(IInstallationRegistry):
    """
    安装注册表类。

    磁盘上的 versions 目录是已安装版本的唯一事实来源，
    不在配置文件中另存清单。
    """

    def __init__(self, config_manager: ConfigManager, plugins: PluginRegistry):
        """
        初始化安装注册表。

        参数:
            config_manager: 配置管理器实例
            plugins: 工具插件注册表
        """
        self.config_manager = config_manager
        self.plugins = plugins

    def list(self, tool: str) -> List[InstalledVersion]:
        """
        列出已安装版本。

        只读扫描。未通过结构探测的目录、以点开头的目录（未完成的安装）
        和断开的链接会被跳过并记录警告，单个坏条目不会导致整个列表失败。

        参数:
            tool: 工具名称

        返回:
            按版本降序排列的已安装版本列表
        """
        plugin = self.plugins.get(tool)
        tool_dir = self.config_manager.tool_versions_dir(plugin.tool)
        if not tool_dir.is_dir():
            return []

        try:
            names = sorted(os.listdir(tool_dir))
        except OSError as e:
            logger.warning(f"无法读取 {tool_dir}: {e}")
            return []

        versions = []
        for name in names:
            if name.startswith("."):
                logger.debug(f"跳过未完成的安装目录: {name}")
                continue

            entry = tool_dir / name
            try:
                installed = self._load_entry(plugin, entry)
            except OSError as e:
                logger.warning(f"处理目录 {entry} 时出错: {e}")
                continue
            if installed is not None:
                versions.append(installed)

        return sort_installed_desc(versions)

    def _load_entry(self, plugin, entry: Path) -> Optional[InstalledVersion]:
        is_link = entry.is_symlink()
        if is_link and not entry.exists():
            logger.warning(f"导入的 {plugin.tool} 安装链接已失效: {entry} -> {os.readlink(entry)}")
            return None
        if not entry.is_dir():
            return None
        if not plugin.validate_installation(entry):
            logger.warning(f"目录 {entry} 不是有效的 {plugin.tool} 安装，已跳过")
            return None

        major, minor, patch = parse_installed_version(entry.name)
        installed_at = datetime.fromtimestamp(os.lstat(entry).st_mtime).isoformat()
        return InstalledVersion(
            tool=plugin.tool,
            major=major,
            minor=minor,
            patch=patch,
            raw=entry.name,
            path=str(entry),
            provenance=Provenance.IMPORTED if is_link else Provenance.MANAGED,
            installed_at=installed_at,
        )

    def get(self, tool: str, raw: str) -> Optional[InstalledVersion]:
        """按原始版本字符串精确查找已安装版本。"""
        for installed in self.list(tool):
            if installed.raw == raw:
                return installed
        return None

    def managed_install_dir(self, tool: str, raw: str) -> Path:
        """
        获取托管安装的目标目录。

        参数:
            tool: 工具名称
            raw: 具体版本号

        返回:
            versions/<tool>/<raw>

        抛出:
            RegistryError: 版本号不能用作目录名
        """
        try:
            InputValidator.validate_version_dirname(raw)
        except InputValidationError as e:
            raise RegistryError(str(e)) from e
        return self.config_manager.tool_versions_dir(tool) / raw

    def import_installation(
        self, tool: str, source: Path, version: Optional[str] = None
    ) -> InstalledVersion:
        """
        导入一个已存在的外部安装。

        在 versions/<tool>/<version> 创建指向源目录的符号链接，
        源目录本身不会被复制或修改。

        参数:
            tool: 工具名称
            source: 外部安装目录
            version: 版本号，为空时执行版本命令检测，再退而从目录名提取

        返回:
            导入后的已安装版本

        抛出:
            RegistryError: 源目录无效或无法确定版本
            VersionAlreadyInstalledError: 同名版本已存在
        """
        plugin = self.plugins.get(tool)
        source = Path(source).expanduser().resolve()
        if not plugin.validate_installation(source):
            raise RegistryError(f"{source} 不是有效的 {plugin.display_name} 安装")

        if not version:
            version = plugin.detect_version(source) or plugin.guess_version_from_name(source.name)
        if not version:
            raise RegistryError(f"无法确定 {source} 的版本，请使用 --version 指定")

        target = self.managed_install_dir(plugin.tool, version)
        if target.exists() or target.is_symlink():
            raise VersionAlreadyInstalledError(f"{plugin.tool} {version} 已存在: {target}")

        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.symlink(source, target, target_is_directory=True)
        except OSError as e:
            raise RegistryError(f"无法创建链接 {target} -> {source}: {e}") from e

        logger.info(f"已导入 {plugin.tool} {version}: {target} -> {source}")
        major, minor, patch = parse_installed_version(version)
        return InstalledVersion(
            tool=plugin.tool,
            major=major,
            minor=minor,
            patch=patch,
            raw=version,
            path=str(target),
            provenance=Provenance.IMPORTED,
            installed_at=datetime.now().isoformat(),
        )

    def remove(self, installed: InstalledVersion) -> None:
        """
        删除一个已安装版本。

        导入的安装只删除内部链接；托管安装只有在是 versions/<tool>/
        下的真实目录时才会被删除，其他情况一律拒绝。

        参数:
            installed: 已安装版本

        抛出:
            RegistryError: 路径不存在
            UnsafeRemovalError: 路径不在本工具管理范围内
        """
        tool_dir = self.config_manager.tool_versions_dir(installed.tool)
        path = Path(installed.path)

        if not (path.exists() or path.is_symlink()):
            raise RegistryError(f"{installed.tool} {installed.raw} 不存在: {path}")

        if path.parent.resolve() != tool_dir.resolve():
            raise UnsafeRemovalError(f"拒绝删除 {tool_dir} 之外的路径: {path}")

        if path.is_symlink():
            path.unlink()
            logger.info(f"已移除导入的 {installed.tool} {installed.raw} 链接，源目录保留")
            return

        if installed.provenance != Provenance.MANAGED or not path.is_dir():
            raise UnsafeRemovalError(f"拒绝删除非托管安装: {path}")

        shutil.rmtree(path)
        logger.info(f"已删除 {installed.tool} {installed.raw}: {path}")
