"""
核心模块抽象接口定义。

定义工具插件、安装注册表、别名存储、项目版本文件读取器、激活器等核心模块的抽象接口。
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from rtvm.core.models import EnvironmentMutation, InstalledVersion, VersionSpec


class IConfigManager(ABC):
    """配置管理器抽象接口。"""

    @abstractmethod
    def get_config(self) -> Dict[str, Any]:
        """获取配置字典。"""
        pass

    @abstractmethod
    def save_config(self, config: Optional[Dict[str, Any]] = None) -> None:
        """保存配置到文件。"""
        pass

    @abstractmethod
    def get_tool_templates(self) -> Dict[str, Any]:
        """获取所有工具配置模板。"""
        pass

    @abstractmethod
    def get_tool_template(self, tool: str) -> Dict[str, Any]:
        """获取指定工具的配置模板。"""
        pass

    @abstractmethod
    def tool_versions_dir(self, tool: str) -> Path:
        """获取指定工具的安装目录。"""
        pass

    @abstractmethod
    def tool_alias_dir(self, tool: str) -> Path:
        """获取指定工具的别名目录。"""
        pass

    @abstractmethod
    def get_cache(self) -> Dict[str, Any]:
        """获取缓存字典。"""
        pass

    @abstractmethod
    def set_cache(self, key: str, value: Any) -> None:
        """设置缓存值并保存。"""
        pass


class IToolPlugin(ABC):
    """
    工具插件抽象接口。

    每个工具只实现一次这组能力，解析器和激活器以多态方式调用。
    """

    @abstractmethod
    def parse_version(self, raw: str) -> VersionSpec:
        """解析版本字符串。"""
        pass

    @abstractmethod
    def validate_installation(self, path: Path) -> bool:
        """判断目录是否像一个有效的工具安装。"""
        pass

    @abstractmethod
    def home_path(self, install_path: Path) -> Path:
        """获取工具的 HOME 目录。"""
        pass

    @abstractmethod
    def path_entries(self, install_path: Path) -> List[Path]:
        """获取需要加入 PATH 的可执行文件目录。"""
        pass

    @abstractmethod
    def list_remote_versions(self, use_cache: bool = True) -> List[Dict[str, Any]]:
        """获取远程可用的版本列表。"""
        pass

    @abstractmethod
    def find_distribution(self, version: str) -> Dict[str, Any]:
        """获取指定版本的发行包信息。"""
        pass


class IInstallationRegistry(ABC):
    """安装注册表抽象接口。"""

    @abstractmethod
    def list(self, tool: str) -> List[InstalledVersion]:
        """列出已安装版本，按版本降序。"""
        pass

    @abstractmethod
    def get(self, tool: str, raw: str) -> Optional[InstalledVersion]:
        """按原始版本字符串查找已安装版本。"""
        pass

    @abstractmethod
    def remove(self, installed: InstalledVersion) -> None:
        """删除一个已安装版本。"""
        pass


class IAliasStore(ABC):
    """别名存储抽象接口。"""

    @abstractmethod
    def get(self, tool: str, name: str) -> Optional[str]:
        """获取别名指向的版本。"""
        pass

    @abstractmethod
    def set(self, tool: str, name: str, version: str) -> None:
        """设置别名。"""
        pass

    @abstractmethod
    def remove(self, tool: str, name: str) -> None:
        """删除别名。"""
        pass

    @abstractmethod
    def list(self, tool: str) -> Dict[str, str]:
        """列出工具的所有别名。"""
        pass


class IProjectFileReader(ABC):
    """项目版本文件读取器抽象接口。"""

    @abstractmethod
    def find(self, tool: str, start_dir: Path) -> Optional[VersionSpec]:
        """查找目录中声明的版本需求。"""
        pass


class IActivator(ABC):
    """激活器抽象接口。"""

    @abstractmethod
    def activate(self, installed: InstalledVersion) -> EnvironmentMutation:
        """激活版本并返回环境变量变更。"""
        pass


class IRemoteFetcher(ABC):
    """远程版本获取器抽象接口。"""

    @abstractmethod
    def get_remote_versions(self, tool: str, use_cache: bool = True) -> List[Dict[str, Any]]:
        """获取远程可用的工具版本。"""
        pass

    @abstractmethod
    def find_distribution(self, tool: str, version: str) -> Dict[str, Any]:
        """获取指定版本的发行包信息。"""
        pass
