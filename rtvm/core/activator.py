"""
激活器模块。

把 current 别名指向选定的安装，并计算调用方需要应用的环境变量变更。
激活器从不修改本进程的环境变量，由外层 shell 执行输出的语句。
"""

from rtvm.core.alias_store import AliasStore, AliasStoreError
from rtvm.core.config_manager import ConfigManager
from rtvm.core.interfaces import IActivator
from rtvm.core.models import EnvironmentMutation, InstalledVersion
from rtvm.core.tool_plugin import PluginRegistry
from rtvm.utils.logger import get_logger

logger = get_logger()

CURRENT_ALIAS = "current"


class ActivationError(Exception):
    """激活失败错误异常。"""

    remediation = "请检查安装目录是否完整，必要时重新安装该版本"


class Activator(IActivator):
    """激活器类。"""

    def __init__(self, config_manager: ConfigManager, plugins: PluginRegistry, alias_store: AliasStore):
        self.config_manager = config_manager
        self.plugins = plugins
        self.alias_store = alias_store

    def activate(self, installed: InstalledVersion) -> EnvironmentMutation:
        """
        激活一个已安装版本。

        先校验安装结构，再原子更新 current 别名，最后计算环境变量变更。
        任一步失败都抛出 ActivationError，不返回部分结果。

        参数:
            installed: 已解析的安装

        返回:
            环境变量变更
        """
        plugin = self.plugins.get(installed.tool)
        if not plugin.validate_installation(installed.path):
            raise ActivationError(f"{installed.path} 不是有效的 {plugin.display_name} 安装")

        try:
            self.alias_store.set_installed(installed.tool, CURRENT_ALIAS, installed)
        except AliasStoreError as e:
            raise ActivationError(f"无法更新 {installed.tool} 的 current 指针: {e}") from e

        mutation = self.compute_mutation(installed)
        logger.info(f"已激活 {installed.tool} {installed.raw}")
        return mutation

    def compute_mutation(self, installed: InstalledVersion) -> EnvironmentMutation:
        """
        计算激活一个安装所需的环境变量变更，不写入任何状态。

        PATH 中属于同一工具的旧目录都位于 versions/<tool> 下，
        按该前缀移除即可保证切换多次后只保留一组目录。

        参数:
            installed: 已安装版本

        返回:
            环境变量变更
        """
        plugin = self.plugins.get(installed.tool)
        home = plugin.home_path(installed.path)
        entries = plugin.path_entries(installed.path)
        tool_dir = self.config_manager.tool_versions_dir(installed.tool)

        return EnvironmentMutation(
            tool=installed.tool,
            home_var=(plugin.home_var, str(home)),
            path_prepend=tuple(str(entry) for entry in entries),
            path_strip_prefixes=(str(tool_dir),),
        )
