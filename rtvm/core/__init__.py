"""
Rtvm 核心模块。

提供版本需求解析、安装注册表、别名存储、项目版本文件、激活和版本管理功能。
"""

from .interfaces import (
    IConfigManager, IToolPlugin, IInstallationRegistry, IAliasStore,
    IProjectFileReader, IActivator, IRemoteFetcher,
)
from .models import (
    Provenance, ExactSpec, AliasSpec, InstalledVersion, EnvironmentMutation,
    ActivationState, ResolutionResult, ActivationOutcome,
)
from .config_manager import ConfigManager, ConfigValidationError, ConfigLoadError, ConfigSaveError
from .tool_plugin import ToolPlugin, PluginRegistry, ToolPluginError, ToolNotFoundError
from .registry import InstallationRegistry, RegistryError, VersionAlreadyInstalledError, UnsafeRemovalError
from .resolver import (
    Resolver, VersionManagerError, ResolutionError, InvalidVersionSyntax, AliasNotFound,
    AliasResolutionDangling, VersionNotInstalled, AmbiguousLiteralVersion, UnresolvableAlias,
)
from .alias_store import AliasStore, AliasStoreError, AliasTargetError
from .project_file import ProjectFileReader
from .activator import Activator, ActivationError
from .remote_fetcher import RemoteFetcher, RemoteFetcherError, NetworkError, MirrorStatus
from .download_manager import DownloadManager, DownloadManagerError, DownloadError, ExtractionError, InstallationError
from .version_manager import VersionManager, VersionInUseError
from . import version_utils

__all__ = [
    "IConfigManager", "IToolPlugin", "IInstallationRegistry", "IAliasStore",
    "IProjectFileReader", "IActivator", "IRemoteFetcher",
    "Provenance", "ExactSpec", "AliasSpec", "InstalledVersion", "EnvironmentMutation",
    "ActivationState", "ResolutionResult", "ActivationOutcome",
    "ConfigManager", "ConfigValidationError", "ConfigLoadError", "ConfigSaveError",
    "ToolPlugin", "PluginRegistry", "ToolPluginError", "ToolNotFoundError",
    "InstallationRegistry", "RegistryError", "VersionAlreadyInstalledError", "UnsafeRemovalError",
    "Resolver", "VersionManagerError", "ResolutionError", "InvalidVersionSyntax", "AliasNotFound",
    "AliasResolutionDangling", "VersionNotInstalled", "AmbiguousLiteralVersion", "UnresolvableAlias",
    "AliasStore", "AliasStoreError", "AliasTargetError",
    "ProjectFileReader",
    "Activator", "ActivationError",
    "RemoteFetcher", "RemoteFetcherError", "NetworkError", "MirrorStatus",
    "DownloadManager", "DownloadManagerError", "DownloadError", "ExtractionError", "InstallationError",
    "VersionManager", "VersionInUseError",
    "version_utils",
]
