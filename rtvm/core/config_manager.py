"""
配置管理器模块。

提供数据目录布局、应用程序配置的加载、保存和验证功能，以及远程版本缓存的读写。
"""

import copy
import json
from pathlib import Path
from typing import Any

from rtvm.core.interfaces import IConfigManager
from rtvm.utils.atomic_file import atomic_save_json
from rtvm.utils.input_validator import InputValidator, InputValidationError
from rtvm.utils.logger import get_logger, get_rtvm_dir

logger = get_logger()


class ConfigValidationError(Exception):
    """配置验证错误异常。"""
    pass


class ConfigLoadError(Exception):
    """配置加载错误异常。"""
    pass


class ConfigSaveError(Exception):
    """配置保存错误异常。"""
    pass


def _builtin_tool_templates() -> dict[str, Any]:
    return {
        "java": {
            "display_name": "Java (Eclipse Temurin)",
            "env_rule": {
                "home_var": "JAVA_HOME",
                "path_entries": ["bin"],
                "path_entries_windows": ["bin"],
            },
            "home_subdirs": ["Contents/Home"],
            "probe_files": ["bin/java", "bin/java.exe", "Contents/Home/bin/java"],
            "marker_files": [".java-version"],
            "detect_paths": {
                "linux": ["/usr/lib/jvm", "/usr/java", "/opt/java", "/opt/jdk", "~/.sdkman/candidates/java"],
                "darwin": [
                    "/Library/Java/JavaVirtualMachines",
                    "/System/Library/Java/JavaVirtualMachines",
                    "~/.sdkman/candidates/java",
                ],
                "windows": [
                    "C:\\Program Files\\Java",
                    "C:\\Program Files (x86)\\Java",
                    "C:\\Program Files\\Eclipse Adoptium",
                ],
            },
            "version_cmd": {
                "executables": ["bin/java", "bin/java.exe", "Contents/Home/bin/java"],
                "args": ["-version"],
                "pattern": "version \"([^\"]+)\"",
            },
            "catalog": {
                "type": "adoptium",
                "urls": ["https://api.adoptium.net/v3/info/available_releases"],
                "download_url_template": (
                    "https://api.adoptium.net/v3/binary/latest/{major}/ga/{os}/{arch}"
                    "/jdk/hotspot/normal/eclipse"
                ),
                "os_map": {"linux": "linux", "darwin": "mac", "windows": "windows"},
                "arch_map": {"x64": "x64", "arm64": "aarch64", "x86": "x86"},
            },
        },
        "node": {
            "display_name": "Node.js",
            "env_rule": {
                "home_var": "NODE_HOME",
                "path_entries": ["bin"],
                "path_entries_windows": [""],
            },
            "home_subdirs": [],
            "probe_files": ["bin/node", "node.exe"],
            "marker_files": [".nvmrc", ".node-version"],
            "detect_paths": {
                "linux": ["/usr/local", "/opt/nodejs", "/usr/lib/nodejs", "~/.nvm/versions/node"],
                "darwin": ["/usr/local", "/opt/homebrew", "~/.nvm/versions/node"],
                "windows": ["C:\\Program Files\\nodejs", "C:\\Program Files (x86)\\nodejs", "%APPDATA%\\nvm"],
            },
            "version_cmd": {
                "executables": ["bin/node", "node.exe"],
                "args": ["--version"],
                "pattern": "v?(\\d+\\.\\d+\\.\\d+)",
            },
            "catalog": {
                "type": "nodejs_index",
                "urls": ["https://nodejs.org/dist/index.json"],
                "download_url_template": (
                    "https://nodejs.org/dist/v{version}/node-v{version}-{os}-{arch}.{ext}"
                ),
                "os_map": {"linux": "linux", "darwin": "darwin", "windows": "win"},
                "arch_map": {"x64": "x64", "arm64": "arm64", "x86": "x86"},
                "ext_map": {"windows": "zip", "default": "tar.gz"},
            },
        },
        "python": {
            "display_name": "Python",
            "env_rule": {
                "home_var": "PYTHON_HOME",
                "path_entries": ["bin"],
                "path_entries_windows": ["", "Scripts"],
            },
            "home_subdirs": [],
            "probe_files": ["bin/python3", "python.exe"],
            "marker_files": [".python-version"],
            "detect_paths": {
                "linux": ["/usr", "/usr/local", "~/.pyenv/versions"],
                "darwin": [
                    "/usr/local",
                    "/opt/homebrew",
                    "/Library/Frameworks/Python.framework/Versions",
                    "~/.pyenv/versions",
                ],
                "windows": [
                    "C:\\Program Files",
                    "%LOCALAPPDATA%\\Programs\\Python",
                    "%USERPROFILE%\\.pyenv\\pyenv-win\\versions",
                ],
            },
            "version_cmd": {
                "executables": ["bin/python3", "python.exe"],
                "args": ["--version"],
                "pattern": "Python (\\d+\\.\\d+\\.\\d+)",
            },
            "catalog": {
                "type": "html_index",
                "urls": [
                    "https://www.python.org/ftp/python/",
                    "https://mirrors.huaweicloud.com/python/",
                ],
                "version_pattern": "href=\"(\\d+\\.\\d+\\.\\d+)/\"",
                "download_url_template": "{mirror}{version}/python-{version}-embed-{arch}.zip",
                "arch_map": {"x64": "amd64", "x86": "win32", "arm64": "arm64"},
            },
        },
    }


class ConfigManager(IConfigManager):
    """
    配置管理器类。

    负责管理数据目录布局以及配置的加载、保存、验证和访问。
    实现 IConfigManager 抽象接口。
    """

    CONFIG_FILE_NAME = "config.json"
    CACHE_FILE_NAME = "cache.json"

    REQUIRED_FIELDS = {
        "settings": dict,
    }

    SETTINGS_FIELDS = {
        "tool_templates": dict,
        "cache_expire_time": int,
        "request_rate_limit": int,
        "download_retry_count": int,
        "search_parent_dirs": bool,
    }

    DEFAULT_SETTINGS = {
        "cache_expire_time": 86400,
        "request_rate_limit": 10,
        "download_retry_count": 3,
        "search_parent_dirs": False,
    }

    def __init__(self, root_dir: Path | None = None):
        """
        初始化配置管理器。

        参数:
            root_dir: 数据根目录，默认取 RTVM_DIR 环境变量或 ~/.rtvm
        """
        self._root_dir = Path(root_dir) if root_dir else get_rtvm_dir()
        self._config: dict[str, Any] = {}
        self._cache: dict[str, Any] = {}
        self._ensure_dirs()

    def _ensure_dirs(self) -> None:
        """确保数据目录结构存在。"""
        for directory in (self.versions_dir, self.alias_dir, self.cache_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    @property
    def versions_dir(self) -> Path:
        return self._root_dir / "versions"

    @property
    def alias_dir(self) -> Path:
        return self._root_dir / "alias"

    @property
    def cache_dir(self) -> Path:
        return self._root_dir / "cache"

    @property
    def logs_dir(self) -> Path:
        return self._root_dir / "logs"

    @property
    def config_file(self) -> Path:
        return self._root_dir / self.CONFIG_FILE_NAME

    @property
    def cache_file(self) -> Path:
        return self._root_dir / self.CACHE_FILE_NAME

    def tool_versions_dir(self, tool: str) -> Path:
        """
        获取指定工具的安装目录 versions/<tool>。

        参数:
            tool: 工具名称

        返回:
            目录路径
        """
        InputValidator.validate_tool_name(tool)
        return self.versions_dir / tool

    def tool_alias_dir(self, tool: str) -> Path:
        """获取指定工具的别名目录 alias/<tool>。"""
        InputValidator.validate_tool_name(tool)
        return self.alias_dir / tool

    def _get_builtin_default_config(self) -> dict[str, Any]:
        """获取内置默认配置。"""
        settings = dict(self.DEFAULT_SETTINGS)
        settings["tool_templates"] = _builtin_tool_templates()
        return {"settings": settings}

    def get_default_config(self) -> dict[str, Any]:
        """
        获取默认配置的深拷贝。

        返回:
            默认配置字典
        """
        return copy.deepcopy(self._get_builtin_default_config())

    def load_config(self) -> dict[str, Any]:
        """
        加载配置文件。

        如果配置文件不存在，则创建默认配置文件；
        配置文件损坏或验证失败时记录错误并使用默认配置。

        返回:
            配置字典
        """
        try:
            if not self.config_file.exists():
                logger.info(f"配置文件不存在，创建默认配置: {self.config_file}")
                self._config = self.get_default_config()
                self.save_config()
                self._load_cache()
                return self._config

            logger.debug(f"从文件加载配置: {self.config_file}")
            with open(self.config_file, "r", encoding="utf-8") as f:
                self._config = json.load(f)

            self._ensure_backward_compatibility()
            self.validate_config(self._config)
            self._load_cache()
            logger.debug("配置加载成功")
            return self._config
        except (IOError, OSError, json.JSONDecodeError) as e:
            logger.error(f"加载配置文件失败，使用默认配置: {e}")
            self._config = self.get_default_config()
            self._load_cache()
            return self._config
        except ConfigValidationError as e:
            logger.error(f"配置验证失败，使用默认配置: {e}")
            self._config = self.get_default_config()
            self._load_cache()
            return self._config

    def _ensure_backward_compatibility(self) -> None:
        """
        为旧版本配置补齐新字段，并合并新增的内置工具模板。
        """
        if not isinstance(self._config, dict):
            raise ConfigValidationError("配置文件顶层必须是对象")

        settings = self._config.setdefault("settings", {})
        if not isinstance(settings, dict):
            return

        for field, value in self.DEFAULT_SETTINGS.items():
            settings.setdefault(field, value)

        templates = settings.setdefault("tool_templates", {})
        if isinstance(templates, dict):
            for tool, template in _builtin_tool_templates().items():
                existing = templates.setdefault(tool, template)
                if isinstance(existing, dict):
                    for key, value in template.items():
                        existing.setdefault(key, value)

    def _load_cache(self) -> None:
        """加载缓存文件，缓存损坏时视为空缓存。"""
        if not self.cache_file.exists():
            self._cache = {}
            return
        try:
            with open(self.cache_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._cache = data if isinstance(data, dict) else {}
        except (IOError, OSError, json.JSONDecodeError) as e:
            logger.warning(f"缓存文件损坏，已忽略: {e}")
            self._cache = {}

    def save_config(self, config: dict[str, Any] | None = None) -> None:
        """
        保存配置到文件。

        参数:
            config: 要保存的配置字典，如果为 None 则保存当前配置
        """
        try:
            if config is not None:
                self._config = config

            self.validate_config(self._config)

            logger.debug(f"保存配置到 {self.config_file}")
            atomic_save_json(self.config_file, self._config, indent=2)
            logger.debug("配置保存成功")
        except ConfigValidationError as e:
            logger.error(f"配置验证失败，无法保存: {e}")
            raise
        except (IOError, OSError) as e:
            logger.error(f"保存配置失败: {e}")
            raise ConfigSaveError(f"无法保存配置到 {self.config_file}: {e}") from e

    def save_cache(self, cache: dict[str, Any] | None = None) -> None:
        """
        保存缓存到文件。

        参数:
            cache: 要保存的缓存字典，如果为 None 则保存当前缓存
        """
        try:
            if cache is not None:
                self._cache = cache

            logger.debug(f"保存缓存到 {self.cache_file}")
            atomic_save_json(self.cache_file, self._cache, indent=2)
        except (IOError, OSError) as e:
            logger.error(f"保存缓存失败: {e}")
            raise ConfigSaveError(f"无法保存缓存到 {self.cache_file}: {e}") from e

    def clear_cache(self) -> None:
        """清空缓存。"""
        logger.info("清空缓存")
        self._cache = {}
        self.save_cache()

    def validate_config(self, config: dict[str, Any]) -> bool:
        """
        验证配置的有效性。

        参数:
            config: 要验证的配置字典

        返回:
            验证通过返回 True

        抛出:
            ConfigValidationError: 配置验证失败时抛出
        """
        if not isinstance(config, dict):
            raise ConfigValidationError("配置必须是字典类型")

        for field, expected_type in self.REQUIRED_FIELDS.items():
            if field not in config:
                raise ConfigValidationError(f"缺少必需字段: {field}")
            if not isinstance(config[field], expected_type):
                raise ConfigValidationError(
                    f"字段 '{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(config[field]).__name__}"
                )

        settings = config["settings"]
        for field, expected_type in self.SETTINGS_FIELDS.items():
            if field not in settings:
                raise ConfigValidationError(f"settings 中缺少必需字段: {field}")
            value = settings[field]
            # bool 是 int 的子类，数值字段需要排除
            if expected_type is int and isinstance(value, bool):
                raise ConfigValidationError(f"字段 'settings.{field}' 必须是 int 类型，实际为 bool")
            if not isinstance(value, expected_type):
                raise ConfigValidationError(
                    f"字段 'settings.{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(value).__name__}"
                )

        for tool, template in settings["tool_templates"].items():
            if not isinstance(template, dict):
                raise ConfigValidationError(f"工具 '{tool}' 的模板必须是对象")
            env_rule = template.get("env_rule", {})
            if not isinstance(env_rule, dict) or not env_rule.get("home_var"):
                raise ConfigValidationError(f"工具 '{tool}' 缺少 env_rule.home_var")
            detect_paths = template.get("detect_paths", {})
            if not isinstance(detect_paths, dict) or not all(
                isinstance(paths, list) for paths in detect_paths.values()
            ):
                raise ConfigValidationError(f"工具 '{tool}' 的 detect_paths 必须是系统到目录列表的映射")

        try:
            InputValidator.validate_json_config(config)
        except InputValidationError as e:
            raise ConfigValidationError(str(e)) from e

        logger.debug("配置验证通过")
        return True

    @property
    def config(self) -> dict[str, Any]:
        """
        获取配置字典（延迟加载）。

        返回:
            配置字典
        """
        if not self._config:
            self.load_config()
        return self._config

    def get_config(self) -> dict[str, Any]:
        """获取配置字典。"""
        return self.config

    def get(self, key: str, default: Any = None) -> Any:
        """
        获取配置值，支持以点分隔的多级键，如 settings.cache_expire_time。

        参数:
            key: 配置键名
            default: 默认值

        返回:
            配置值或默认值
        """
        node: Any = self.config
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        """
        设置配置值并保存，支持以点分隔的多级键。

        新值未通过验证时恢复原配置并抛出 ConfigValidationError。

        参数:
            key: 配置键名
            value: 配置值
        """
        parts = key.split(".")
        if not all(parts):
            raise ConfigValidationError(f"无效的配置键: {key}")

        backup = copy.deepcopy(self.config)
        node = self._config
        for part in parts[:-1]:
            child = node.get(part)
            if child is None:
                child = node[part] = {}
            elif not isinstance(child, dict):
                raise ConfigValidationError(f"配置键 '{part}' 不是对象，无法设置 {key}")
            node = child
        node[parts[-1]] = value

        try:
            self.save_config()
        except ConfigValidationError:
            self._config = backup
            raise
        logger.info(f"配置已更新: {key} = {value!r}")

    def get_settings(self) -> dict[str, Any]:
        """获取 settings 配置部分。"""
        return self.config.get("settings", {})

    def get_tool_templates(self) -> dict[str, Any]:
        """
        获取所有工具配置模板。

        返回:
            工具名称到配置模板的映射字典
        """
        return self.get_settings().get("tool_templates", {})

    def get_tool_template(self, tool: str) -> dict[str, Any]:
        """
        获取指定工具的配置模板。

        参数:
            tool: 工具名称

        返回:
            工具配置模板字典，如果未找到则返回空字典
        """
        return self.get_tool_templates().get(tool, {})

    def get_env_rule(self, tool: str) -> dict[str, Any]:
        """
        获取指定工具的环境变量规则。

        参数:
            tool: 工具名称

        返回:
            环境变量规则字典，如果未配置则返回默认规则
        """
        env_rule = self.get_tool_template(tool).get("env_rule", {})
        if not env_rule:
            return {
                "home_var": f"{tool.upper()}_HOME",
                "path_entries": ["bin"],
            }
        return env_rule

    def get_cache_expire_time(self) -> int:
        """获取缓存过期时间配置（秒）。"""
        return self.get_settings().get("cache_expire_time", 86400)

    def get_request_rate_limit(self) -> int:
        """获取请求频率限制配置（次/秒）。"""
        return self.get_settings().get("request_rate_limit", 10)

    def get_download_retry_count(self) -> int:
        """获取下载重试次数配置。"""
        return self.get_settings().get("download_retry_count", 3)

    def get_search_parent_dirs(self) -> bool:
        """项目版本文件是否向上级目录查找。"""
        return bool(self.get_settings().get("search_parent_dirs", False))

    def get_cache(self) -> dict[str, Any]:
        """
        获取缓存字典。

        返回:
            cache 字典
        """
        if not self._cache:
            self._load_cache()
        return self._cache

    def set_cache(self, key: str, value: Any) -> None:
        """
        设置缓存值并保存。

        参数:
            key: 缓存键名
            value: 缓存值
        """
        self.get_cache()[key] = value
        self.save_cache()

    def reset_to_default(self) -> dict[str, Any]:
        """
        重置配置为内置默认配置。

        返回:
            更新后的配置字典
        """
        self._config = self.get_default_config()
        self.save_config()
        return self._config
