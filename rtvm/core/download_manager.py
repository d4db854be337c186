"""
下载管理模块。

提供工具版本的下载、解压和安装功能。安装先解压到
versions/<tool>/.tmp-<version>-* 临时目录，校验通过后再重命名到最终位置，
中断的安装只会留下被安装注册表忽略的点开头目录。
"""

import os
import shutil
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Optional

import requests

from rtvm.core.config_manager import ConfigManager
from rtvm.core.models import InstalledVersion
from rtvm.core.registry import InstallationRegistry, RegistryError, VersionAlreadyInstalledError
from rtvm.core.tool_plugin import PluginRegistry, ToolPlugin
from rtvm.utils.logger import get_logger
from rtvm.utils.rate_limiter import RateLimiter
from rtvm.utils.retry import RetryHandler

logger = get_logger()

DOWNLOAD_TIMEOUT = 300
CHUNK_SIZE = 8192


class DownloadManagerError(Exception):
    """下载管理错误异常。"""
    pass


class DownloadError(DownloadManagerError):
    """下载错误异常。"""

    remediation = "请检查网络连接，或稍后重试"


class ExtractionError(DownloadManagerError):
    """解压错误异常。"""

    remediation = "安装包可能已损坏，请重新执行安装"


class InstallationError(DownloadManagerError):
    """安装错误异常。"""

    remediation = "请检查下载地址模板是否对应当前平台的发行包"


def _safe_join(base: str, name: str) -> str:
    base = os.path.abspath(base)
    joined = os.path.abspath(os.path.join(base, name))
    if joined != base and not joined.startswith(base + os.sep):
        raise ExtractionError(f"压缩包包含非法路径: {name}")
    return joined


class DownloadManager:
    """
    下载管理器类。

    负责工具版本的下载、解压和安装。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        registry: InstallationRegistry,
        plugins: PluginRegistry,
        retry_handler: Optional[RetryHandler] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """
        初始化下载管理器。

        参数:
            config_manager: 配置管理器实例
            registry: 安装注册表
            plugins: 工具插件注册表
            retry_handler: 重试处理器，默认按配置的重试次数创建
            rate_limiter: 速率限制器，默认按配置的请求频率创建
        """
        self.config_manager = config_manager
        self.registry = registry
        self.plugins = plugins
        self.retry_handler = retry_handler or RetryHandler(
            max_retries=config_manager.get_download_retry_count()
        )
        self.rate_limiter = rate_limiter or RateLimiter(
            requests_per_second=config_manager.get_request_rate_limit()
        )

    def download_version(
        self,
        tool: str,
        version: str,
        download_url: str,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> InstalledVersion:
        """
        下载并安装指定版本。

        参数:
            tool: 工具名称
            version: 版本号（也是安装目录名）
            download_url: 发行包下载地址
            progress_callback: 下载进度回调函数 (已下载字节, 总字节)

        返回:
            新安装的版本

        抛出:
            VersionAlreadyInstalledError: 版本已存在
            DownloadError / ExtractionError / InstallationError: 各阶段失败
        """
        plugin = self.plugins.get(tool)
        target = self.registry.managed_install_dir(plugin.tool, version)
        if target.exists() or target.is_symlink():
            raise VersionAlreadyInstalledError(f"{plugin.tool} {version} 已安装: {target}")

        archive_path = self.config_manager.cache_dir / f"{plugin.tool}-{version}.download"
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        target.parent.mkdir(parents=True, exist_ok=True)

        try:
            logger.info(f"正在从 {download_url} 下载 {plugin.tool} {version}")
            try:
                self.retry_handler.execute(self._download, download_url, archive_path, progress_callback)
            except requests.exceptions.RequestException as e:
                raise DownloadError(f"下载 {plugin.tool} {version} 失败: {e}") from e

            return self._install_archive(plugin, version, archive_path)
        finally:
            if archive_path.exists():
                archive_path.unlink()

    def _download(
        self,
        url: str,
        archive_path: Path,
        progress_callback: Optional[Callable[[int, int], None]],
    ) -> None:
        self.rate_limiter.acquire()
        response = requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT)
        response.raise_for_status()

        total_size = int(response.headers.get("content-length", 0))
        downloaded = 0
        with open(archive_path, "wb") as f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                f.write(chunk)
                downloaded += len(chunk)
                if progress_callback and total_size > 0:
                    progress_callback(downloaded, total_size)

    def _install_archive(self, plugin: ToolPlugin, version: str, archive_path: Path) -> InstalledVersion:
        tool_dir = self.config_manager.tool_versions_dir(plugin.tool)
        staging = Path(tempfile.mkdtemp(dir=str(tool_dir), prefix=f".tmp-{version}-"))

        try:
            self._extract_archive(archive_path, staging)

            content_root = self._content_root(staging)
            if not plugin.validate_installation(content_root):
                raise InstallationError(f"解压结果不是有效的 {plugin.display_name} 安装")

            final_version = self._refine_version(plugin, version, content_root)
            target = self.registry.managed_install_dir(plugin.tool, final_version)
            if target.exists() or target.is_symlink():
                raise VersionAlreadyInstalledError(f"{plugin.tool} {final_version} 已安装: {target}")

            os.rename(content_root, target)
            logger.info(f"成功安装 {plugin.tool} {final_version}: {target}")
        except VersionAlreadyInstalledError:
            raise
        except (OSError, RegistryError) as e:
            raise InstallationError(f"安装 {plugin.tool} {version} 失败: {e}") from e
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        installed = self.registry.get(plugin.tool, final_version)
        if installed is None:
            raise InstallationError(f"安装后未能在 {tool_dir} 中找到 {final_version}")
        return installed

    @staticmethod
    def _content_root(staging: Path) -> Path:
        """压缩包只有一个顶层目录时，以该目录作为安装内容。"""
        entries = list(staging.iterdir())
        if len(entries) == 1 and entries[0].is_dir() and not entries[0].is_symlink():
            return entries[0]
        return staging

    @staticmethod
    def _refine_version(plugin: ToolPlugin, version: str, content_root: Path) -> str:
        """
        请求的是主版本号（如 Adoptium 的 21）时，用顶层目录名中的完整版本号命名安装目录。
        """
        guessed = plugin.guess_version_from_name(content_root.name)
        if guessed and guessed != version and guessed.startswith(version + "."):
            return guessed
        return version

    def _extract_archive(self, archive_path: Path, target_dir: Path) -> None:
        """
        解压安装包，防止路径遍历漏洞。

        参数:
            archive_path: 压缩包路径
            target_dir: 目标目录
        """
        if zipfile.is_zipfile(archive_path):
            self._extract_zip(archive_path, target_dir)
        elif tarfile.is_tarfile(archive_path):
            self._extract_tar(archive_path, target_dir)
        else:
            raise ExtractionError(f"不支持的安装包格式: {archive_path.name}")

    @staticmethod
    def _extract_zip(archive_path: Path, target_dir: Path) -> None:
        try:
            with zipfile.ZipFile(archive_path, "r") as zf:
                for member in zf.infolist():
                    member_path = _safe_join(str(target_dir), member.filename)
                    if member.is_dir():
                        os.makedirs(member_path, exist_ok=True)
                        continue
                    os.makedirs(os.path.dirname(member_path), exist_ok=True)
                    with zf.open(member) as src, open(member_path, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                    mode = (member.external_attr >> 16) & 0o777
                    if mode:
                        os.chmod(member_path, mode)
        except zipfile.BadZipFile as e:
            raise ExtractionError(f"zip 安装包损坏: {e}") from e

    @staticmethod
    def _extract_tar(archive_path: Path, target_dir: Path) -> None:
        try:
            with tarfile.open(archive_path, "r:*") as tf:
                for member in tf.getmembers():
                    _safe_join(str(target_dir), member.name)
                tf.extractall(target_dir, filter="data")
        except tarfile.FilterError as e:
            raise ExtractionError(f"tar 安装包包含非法条目: {e}") from e
        except tarfile.TarError as e:
            raise ExtractionError(f"tar 安装包损坏: {e}") from e
