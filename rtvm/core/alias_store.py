"""
别名存储模块。

每个别名保存为 alias/<tool>/<name> 下的一个 JSON 记录，
所有写入都先写同目录临时文件再原子替换。
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from rtvm.core.config_manager import ConfigManager
from rtvm.core.interfaces import IAliasStore, IInstallationRegistry
from rtvm.core.models import AliasSpec, ExactSpec, InstalledVersion
from rtvm.core.resolver import VersionNotInstalled
from rtvm.core.version_utils import REMOTE_ALIASES, parse_spec
from rtvm.utils.atomic_file import atomic_save_json, is_temp_file
from rtvm.utils.input_validator import InputValidator, InputValidationError
from rtvm.utils.logger import get_logger

logger = get_logger()


class AliasStoreError(Exception):
    """别名存储错误异常。"""
    pass


class AliasTargetError(AliasStoreError):
    """别名目标不是具体版本。"""

    remediation = "别名只能指向具体的已安装版本，不能指向另一个别名"


class AliasStore(IAliasStore):
    """
    别名存储类。

    只保存版本引用（原始版本字符串），不复制安装信息；
    读取时不校验目标版本是否仍然安装，悬空别名由解析器处理。
    """

    def __init__(self, config_manager: ConfigManager, registry: IInstallationRegistry):
        """
        初始化别名存储。

        参数:
            config_manager: 配置管理器实例
            registry: 安装注册表，用于写入时校验目标版本
        """
        self.config_manager = config_manager
        self.registry = registry

    def _alias_file(self, tool: str, name: str) -> Path:
        return self.config_manager.tool_alias_dir(tool) / name

    def get(self, tool: str, name: str) -> Optional[str]:
        """
        获取别名指向的版本。

        记录不可读或已损坏时视为不存在。

        参数:
            tool: 工具名称
            name: 别名

        返回:
            原始版本字符串，不存在返回 None
        """
        try:
            InputValidator.validate_alias_name(name)
        except InputValidationError:
            return None

        record = self._read_record(self._alias_file(tool, name))
        if record is None:
            return None
        return record["version"]

    def _read_record(self, alias_file: Path) -> Optional[Dict[str, str]]:
        if not alias_file.is_file():
            return None
        try:
            with open(alias_file, "r", encoding="utf-8") as f:
                record = json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"别名记录 {alias_file} 无法读取，已忽略: {e}")
            return None

        if not isinstance(record, dict) or not isinstance(record.get("version"), str):
            logger.warning(f"别名记录 {alias_file} 格式无效，已忽略")
            return None
        return record

    def set(self, tool: str, name: str, version: str) -> None:
        """
        设置别名。

        参数:
            tool: 工具名称
            name: 别名
            version: 目标版本的原始字符串，必须是已安装的具体版本

        抛出:
            AliasStoreError: 别名无效或为保留名称
            AliasTargetError: 目标是别名而不是具体版本
            VersionNotInstalled: 目标版本未安装
        """
        self._validate_name(name)

        version = (version or "").strip()
        if isinstance(parse_spec(version), AliasSpec) or self.get(tool, version) is not None:
            raise AliasTargetError(f"别名 '{name}' 不能指向另一个别名 '{version}'")

        installed = self.registry.get(tool, version)
        if installed is None:
            raise VersionNotInstalled(tool, version)

        self.set_installed(tool, name, installed)

    def set_installed(self, tool: str, name: str, installed: InstalledVersion) -> None:
        """
        把别名指向一个已确认存在的安装，供激活器更新 current 使用。

        参数:
            tool: 工具名称
            name: 别名
            installed: 已安装版本
        """
        self._validate_name(name)
        record = {
            "version": installed.raw,
            "path": installed.path,
            "updated_at": datetime.now().isoformat(),
        }
        alias_file = self._alias_file(tool, name)
        try:
            atomic_save_json(alias_file, record)
        except OSError as e:
            raise AliasStoreError(f"无法写入别名 {tool}/{name}: {e}") from e
        logger.info(f"{tool} 别名 {name} -> {installed.raw}")

    def _validate_name(self, name: str) -> None:
        try:
            InputValidator.validate_alias_name(name)
        except InputValidationError as e:
            raise AliasStoreError(str(e)) from e
        if name.lower() in REMOTE_ALIASES:
            raise AliasStoreError(f"'{name}' 是保留名称，不能用作别名")
        # v17、j21 这类名称会被当作数字版本解析，别名永远无法被引用
        spec = parse_spec(name)
        if isinstance(spec, ExactSpec) and not spec.is_literal:
            raise AliasStoreError(f"'{name}' 会被解析为版本号 {'.'.join(map(str, spec.components))}，不能用作别名")

    def remove(self, tool: str, name: str) -> None:
        """删除别名，别名不存在时不做任何事。"""
        self._validate_name(name)
        alias_file = self._alias_file(tool, name)
        try:
            alias_file.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise AliasStoreError(f"无法删除别名 {tool}/{name}: {e}") from e
        logger.info(f"已删除 {tool} 别名 {name}")

    def list(self, tool: str) -> Dict[str, str]:
        """
        列出工具的所有别名。

        参数:
            tool: 工具名称

        返回:
            别名到原始版本字符串的映射，按别名排序
        """
        alias_dir = self.config_manager.tool_alias_dir(tool)
        if not alias_dir.is_dir():
            return {}

        aliases = {}
        for alias_file in sorted(alias_dir.iterdir()):
            if alias_file.name.startswith(".") or is_temp_file(alias_file):
                continue
            version = self.get(tool, alias_file.name)
            if version is not None:
                aliases[alias_file.name] = version
        return aliases
