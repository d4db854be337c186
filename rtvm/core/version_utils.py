"""
版本工具模块。

提供版本需求解析、已安装版本号解析、排序、分组等工具函数。
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from rtvm.core.models import AliasSpec, ExactSpec, InstalledVersion, VersionSpec

RESERVED_ALIASES = frozenset({"lts", "latest", "current", "default"})
REMOTE_ALIASES = frozenset({"lts", "latest"})

_PREFIX_PATTERN = re.compile(r'^[^\d](?=\d)')
_SPEC_PATTERN = re.compile(r'^(\d+)(?:\.(\d+))?(?:\.(\d+))?$')
_INSTALLED_PATTERN = re.compile(r'^(\d+)(?:\.(\d+))?(?:\.(\d+))?')
_LTS_PATTERN = re.compile(r'^lts(?:/[\w*-]+)?$', re.IGNORECASE)


def strip_version_prefix(raw: str) -> str:
    """
    去掉紧跟数字的单个前缀字符，如 v21 -> 21。

    参数:
        raw: 原始版本字符串

    返回:
        去掉前缀后的字符串
    """
    return _PREFIX_PATTERN.sub("", raw.strip(), count=1)


def normalize_raw(raw: str) -> str:
    """返回用于字面量比较的规范化版本字符串。"""
    return strip_version_prefix(raw).lower()


def _to_int(value: Optional[str]) -> Optional[int]:
    return int(value) if value is not None else None


def parse_spec(raw: str) -> VersionSpec:
    """
    把用户输入解析为版本需求，永不失败。

    规则:
        - 1 到 3 个点分数字分量，缺省的尾部分量表示通配；
        - lts、latest、current、default（不区分大小写）以及 lts/* 识别为别名；
        - 其他字符串作为字面量，只保留原始字符串用于精确匹配。

    参数:
        raw: 原始版本字符串

    返回:
        ExactSpec 或 AliasSpec
    """
    raw = (raw or "").strip()
    lowered = raw.lower()

    if lowered in RESERVED_ALIASES:
        return AliasSpec(name=lowered, raw=raw)
    if _LTS_PATTERN.match(raw):
        return AliasSpec(name="lts", raw=raw)

    match = _SPEC_PATTERN.match(strip_version_prefix(raw))
    if match:
        major, minor, patch = (_to_int(g) for g in match.groups())
        return ExactSpec(major=major, minor=minor, patch=patch, raw=raw)

    return ExactSpec(major=None, minor=None, patch=None, raw=raw)


def parse_installed_version(raw: str) -> Tuple[Optional[int], Optional[int], Optional[int]]:
    """
    解析具体版本号开头的数字分量。

    构建号等非数字后缀（如 21.0.7+6、1.8.0_452）只保留在原始字符串中。

    参数:
        raw: 安装目录名或具体版本号

    返回:
        (major, minor, patch) 元组，无法解析的分量为 None
    """
    match = _INSTALLED_PATTERN.match(strip_version_prefix(raw))
    if not match:
        return None, None, None
    return tuple(_to_int(g) for g in match.groups())


def version_sort_key(installed: InstalledVersion) -> Tuple[Tuple[int, int, int], str]:
    """已安装版本的排序键：版本元组，其次是原始字符串。"""
    return installed.version_tuple, installed.raw


def sort_installed_desc(versions: Iterable[InstalledVersion]) -> List[InstalledVersion]:
    """
    按版本元组降序排列已安装版本，原始字符串作为最终决胜条件。

    参数:
        versions: 已安装版本

    返回:
        排序后的列表
    """
    return sorted(versions, key=version_sort_key, reverse=True)


def _version_str_key(version_str: str) -> tuple:
    components = parse_installed_version(version_str)
    return tuple(-1 if c is None else c for c in components), version_str


def sort_versions_desc(versions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    按版本号降序排列版本信息字典列表（远程版本目录使用）。

    参数:
        versions: 版本信息列表

    返回:
        排序后的版本列表
    """
    return sorted(
        versions,
        key=lambda v: _version_str_key(str(v.get("version", "0"))),
        reverse=True,
    )


def group_versions_by_major(versions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    按主版本号分组版本列表。

    参数:
        versions: 版本信息列表

    返回:
        分组后的版本列表，每个分组包含 major_version、versions 和 has_lts
    """
    groups: Dict[str, Dict[str, Any]] = {}

    for v in sort_versions_desc(versions):
        major, _, _ = parse_installed_version(str(v.get("version", "")))
        key = str(major) if major is not None else "0"

        if key not in groups:
            groups[key] = {
                "major_version": key,
                "versions": [],
                "has_lts": False,
            }

        groups[key]["versions"].append(v)
        if v.get("lts"):
            groups[key]["has_lts"] = True

    result = list(groups.values())
    result.sort(key=lambda g: int(g["major_version"]), reverse=True)
    return result
