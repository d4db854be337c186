"""
核心数据模型模块。

定义版本需求、已安装版本、环境变量变更等在各核心模块之间传递的数据结构。
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class Provenance(str, Enum):
    """安装来源。"""

    MANAGED = "managed"
    IMPORTED = "imported"


@dataclass(frozen=True)
class ExactSpec:
    """
    数字版本需求。

    缺省的分量表示通配，而不是 0。三个分量都缺省时为字面量需求，
    只能通过原始字符串匹配。
    """

    major: Optional[int]
    minor: Optional[int]
    patch: Optional[int]
    raw: str

    @property
    def is_literal(self) -> bool:
        """是否为无数字分量的字面量需求。"""
        return self.major is None

    @property
    def components(self) -> Tuple[Optional[int], ...]:
        """已指定的版本分量。"""
        return tuple(c for c in (self.major, self.minor, self.patch) if c is not None)

    def matches(self, installed: "InstalledVersion") -> bool:
        """
        判断已安装版本是否满足所有已指定的分量。

        参数:
            installed: 已安装版本

        返回:
            满足返回 True，否则返回 False
        """
        if self.is_literal:
            return False
        wanted = (self.major, self.minor, self.patch)
        actual = (installed.major, installed.minor, installed.patch)
        for want, have in zip(wanted, actual):
            if want is not None and want != have:
                return False
        return True


@dataclass(frozen=True)
class AliasSpec:
    """别名需求，如 default、current、lts 或用户自定义别名。"""

    name: str
    raw: str


VersionSpec = Union[ExactSpec, AliasSpec]


@dataclass(frozen=True)
class InstalledVersion:
    """
    一个具体的磁盘安装。

    path 只是位置信息，删除时由安装注册表根据 provenance 决定能删什么。
    """

    tool: str
    major: Optional[int]
    minor: Optional[int]
    patch: Optional[int]
    raw: str
    path: str
    provenance: Provenance = Provenance.MANAGED
    installed_at: Optional[str] = None

    @property
    def version_tuple(self) -> Tuple[int, int, int]:
        """用于排序的版本元组，缺省分量记为 -1。"""
        return tuple(-1 if c is None else c for c in (self.major, self.minor, self.patch))

    def to_dict(self) -> Dict[str, Any]:
        """转换为可 JSON 序列化的字典。"""
        return {
            "tool": self.tool,
            "version": self.raw,
            "path": self.path,
            "provenance": self.provenance.value,
            "installed_at": self.installed_at,
        }


@dataclass(frozen=True)
class DetectedInstallation:
    """
    在本机上发现的、不在 rtvm 数据目录中的工具安装。

    source 为 env（HOME 环境变量）、path（PATH 中的可执行文件）或 common（常见安装目录）。
    registered 是已经指向该目录的导入版本，尚未导入时为 None。
    """

    tool: str
    path: str
    version: Optional[str]
    source: str
    registered: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """转换为可 JSON 序列化的字典。"""
        return {
            "tool": self.tool,
            "path": self.path,
            "version": self.version,
            "source": self.source,
            "registered": self.registered,
        }


@dataclass(frozen=True)
class EnvironmentMutation:
    """
    激活一个版本时调用方需要应用的环境变量变更。

    先从 PATH 中移除属于同一工具的旧目录（按路径前缀识别），
    再把新目录按顺序放到最前面。
    """

    tool: str
    home_var: Tuple[str, str]
    path_prepend: Tuple[str, ...]
    path_strip_prefixes: Tuple[str, ...]

    def apply_to_path(self, path_value: Optional[str], sep: str = os.pathsep) -> str:
        """
        计算应用变更后的 PATH 值，不修改任何进程环境。

        参数:
            path_value: 当前 PATH 值
            sep: PATH 分隔符

        返回:
            新的 PATH 值
        """
        entries = path_value.split(sep) if path_value else []
        kept = [
            entry for entry in entries
            if not self._is_stripped(entry) and not self._is_prepended(entry)
        ]
        return sep.join(list(self.path_prepend) + kept)

    def apply_to_environ(self, environ: Dict[str, str], sep: str = os.pathsep) -> Dict[str, str]:
        """返回应用变更后的环境变量副本，原字典不变。"""
        env = dict(environ)
        name, value = self.home_var
        env[name] = value
        # Windows 上的键可能是 Path
        path_key = next((key for key in env if key.upper() == "PATH"), "PATH")
        env[path_key] = self.apply_to_path(env.get(path_key), sep=sep)
        return env

    def _is_stripped(self, entry: str) -> bool:
        if not entry:
            return False
        normalized = _normalize(entry)
        for prefix in self.path_strip_prefixes:
            prefix = _normalize(prefix)
            if normalized == prefix or normalized.startswith(prefix.rstrip(os.sep) + os.sep):
                return True
        return False

    def _is_prepended(self, entry: str) -> bool:
        return bool(entry) and _normalize(entry) in {_normalize(p) for p in self.path_prepend}

    def to_dict(self) -> Dict[str, Any]:
        """转换为可 JSON 序列化的字典。"""
        return {
            "tool": self.tool,
            "home_var": {"name": self.home_var[0], "value": self.home_var[1]},
            "path_prepend": list(self.path_prepend),
            "path_strip_prefixes": list(self.path_strip_prefixes),
        }


def _normalize(path: str) -> str:
    return os.path.normcase(os.path.normpath(path))


class ActivationState(str, Enum):
    """单次版本切换的状态。"""

    IDLE = "idle"
    PARSING = "parsing"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"


@dataclass
class ResolutionResult:
    """解析结果：一个已安装版本，或一个带类型的错误。"""

    installed: Optional[InstalledVersion] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.installed is not None and self.error is None


@dataclass
class ActivationOutcome:
    """一次 use / auto 调用的最终状态记录。"""

    tool: str
    raw_spec: str
    state: ActivationState = ActivationState.IDLE
    spec: Optional[VersionSpec] = None
    installed: Optional[InstalledVersion] = None
    mutation: Optional[EnvironmentMutation] = None
    history: list = field(default_factory=list)

    def advance(self, state: ActivationState) -> None:
        """推进到下一个状态并记录历史。"""
        self.history.append(self.state)
        self.state = state
