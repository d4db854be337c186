"""
输入验证模块。

提供工具名称、别名、版本号和路径等用户输入的验证功能。
"""

import os
import re
from typing import Any, Dict


class InputValidationError(Exception):
    """输入验证错误异常。"""
    pass


class InputValidator:
    """
    输入验证器类。

    版本号、别名会作为目录名或文件名落盘，因此在进入核心模块前统一校验。
    """

    TOOL_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+$')
    ALIAS_NAME_PATTERN = re.compile(r'^[a-zA-Z][a-zA-Z0-9_.-]*$')
    VERSION_SPEC_PATTERN = re.compile(r'^[a-zA-Z0-9._+*/-]+$')
    VERSION_DIR_PATTERN = re.compile(r'^[a-zA-Z0-9_+-][a-zA-Z0-9._+-]*$')
    MAX_TOOL_NAME_LENGTH = 50
    MAX_ALIAS_NAME_LENGTH = 64
    MAX_PATH_LENGTH = 1024
    MAX_VERSION_LENGTH = 100

    @classmethod
    def validate_tool_name(cls, tool_name: str) -> bool:
        """
        验证工具名称的有效性。

        参数:
            tool_name: 工具名称

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not tool_name or not tool_name.strip():
            raise InputValidationError("工具名称不能为空")

        tool_name = tool_name.strip()

        if len(tool_name) > cls.MAX_TOOL_NAME_LENGTH:
            raise InputValidationError(f"工具名称不能超过 {cls.MAX_TOOL_NAME_LENGTH} 个字符")

        if not cls.TOOL_NAME_PATTERN.match(tool_name):
            raise InputValidationError("工具名称只能包含字母、数字、下划线和连字符")

        return True

    @classmethod
    def sanitize_tool_name(cls, tool_name: str) -> str:
        """
        规范化工具名称（去除空白并转为小写）。

        参数:
            tool_name: 原始工具名称

        返回:
            规范化后的工具名称
        """
        if not tool_name:
            return ""
        return tool_name.strip().lower()

    @classmethod
    def validate_alias_name(cls, alias_name: str) -> bool:
        """
        验证别名的有效性。

        别名必须以字母开头，避免与版本号混淆。

        参数:
            alias_name: 别名

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not alias_name or not alias_name.strip():
            raise InputValidationError("别名不能为空")

        if len(alias_name) > cls.MAX_ALIAS_NAME_LENGTH:
            raise InputValidationError(f"别名不能超过 {cls.MAX_ALIAS_NAME_LENGTH} 个字符")

        if not cls.ALIAS_NAME_PATTERN.match(alias_name):
            raise InputValidationError("别名必须以字母开头，且只能包含字母、数字、点、下划线和连字符")

        return True

    @classmethod
    def validate_version_string(cls, version: str) -> bool:
        """
        验证用户输入的版本号字符串（可以是部分版本、别名或 lts/*）。

        参数:
            version: 版本号字符串

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not version or not version.strip():
            raise InputValidationError("版本号不能为空")

        if len(version.strip()) > cls.MAX_VERSION_LENGTH:
            raise InputValidationError(f"版本号不能超过 {cls.MAX_VERSION_LENGTH} 个字符")

        if not cls.VERSION_SPEC_PATTERN.match(version.strip()):
            raise InputValidationError("版本号格式无效")

        return True

    @classmethod
    def validate_version_dirname(cls, version: str) -> bool:
        """
        验证可作为安装目录名的具体版本号。

        参数:
            version: 具体版本号

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        cls.validate_version_string(version)
        if not cls.VERSION_DIR_PATTERN.match(version) or version in (".", ".."):
            raise InputValidationError(f"版本号 {version} 不能用作安装目录名")
        return True

    @classmethod
    def validate_path(cls, path: str) -> bool:
        """
        验证路径的有效性。

        参数:
            path: 路径字符串

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if path is None:
            return True

        if len(str(path)) > cls.MAX_PATH_LENGTH:
            raise InputValidationError(f"路径不能超过 {cls.MAX_PATH_LENGTH} 个字符")

        return True

    @classmethod
    def safe_join_path(cls, base_path: str, *paths: str) -> str:
        """
        安全连接路径，防止路径遍历。

        参数:
            base_path: 基础路径
            *paths: 要连接的路径部分

        返回:
            安全连接后的路径

        抛出:
            InputValidationError: 如果结果路径位于 base_path 外部
        """
        base = os.path.abspath(base_path)
        joined = os.path.abspath(os.path.join(base, *paths))
        if not joined.startswith(base + os.sep):
            raise InputValidationError(f"路径遍历检测: {joined}")
        return joined

    @classmethod
    def validate_json_config(cls, config_data: Dict[str, Any]) -> bool:
        """
        验证 JSON 配置中工具模板名称的有效性。

        参数:
            config_data: 配置数据字典

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not isinstance(config_data, dict):
            raise InputValidationError("配置必须是字典类型")

        tool_templates = config_data.get("settings", {}).get("tool_templates", {})
        if not isinstance(tool_templates, dict):
            raise InputValidationError("tool_templates 必须是字典类型")

        for tool_name in tool_templates:
            try:
                cls.validate_tool_name(tool_name)
            except InputValidationError as e:
                raise InputValidationError(f"工具 '{tool_name}': {e}") from e

        return True
