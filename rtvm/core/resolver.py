"""
版本解析器模块。

把版本需求解析为唯一的已安装版本。解析过程只读，没有副作用，
相同的输入和磁盘状态总是得到相同的结果。
"""

from typing import List

from rtvm.core.interfaces import IAliasStore, IInstallationRegistry
from rtvm.core.models import AliasSpec, ExactSpec, InstalledVersion, ResolutionResult, VersionSpec
from rtvm.core.version_utils import REMOTE_ALIASES, normalize_raw
from rtvm.utils.logger import get_logger

logger = get_logger()


class VersionManagerError(Exception):
    """版本管理错误异常。"""

    remediation = ""

    def __init__(self, message: str, remediation: str = ""):
        super().__init__(message)
        if remediation:
            self.remediation = remediation


class ResolutionError(VersionManagerError):
    """版本解析失败，每个子类都带有一条修复建议。"""
    pass


class InvalidVersionSyntax(ResolutionError):
    """版本字符串格式无效。"""

    def __init__(self, raw: str, reason: str = ""):
        self.raw = raw
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"无效的版本格式 '{raw}'{detail}",
            "请检查版本格式，例如 21、21.0 或 21.0.7",
        )


class AliasNotFound(ResolutionError):
    """别名不存在。"""

    def __init__(self, tool: str, name: str):
        self.tool = tool
        self.name = name
        super().__init__(
            f"{tool} 的别名 '{name}' 不存在",
            f"运行 rtvm alias {tool} {name} <版本> 创建该别名",
        )


class AliasResolutionDangling(ResolutionError):
    """别名指向的版本已被卸载。"""

    def __init__(self, tool: str, name: str, target: str):
        self.tool = tool
        self.name = name
        self.target = target
        super().__init__(
            f"{tool} 的别名 '{name}' 指向的版本 {target} 未安装",
            f"运行 rtvm alias {tool} {name} <已安装版本> 重新设置该别名",
        )


class VersionNotInstalled(ResolutionError):
    """没有满足需求的已安装版本。"""

    def __init__(self, tool: str, raw: str):
        self.tool = tool
        self.raw = raw
        super().__init__(
            f"{tool} {raw} 未安装",
            f"运行 rtvm install {tool} {raw} 安装该版本",
        )


class AmbiguousLiteralVersion(ResolutionError):
    """字面量版本匹配到多个已安装版本。"""

    def __init__(self, tool: str, raw: str, candidates: List[str]):
        self.tool = tool
        self.raw = raw
        self.candidates = candidates
        super().__init__(
            f"{tool} 版本 '{raw}' 匹配到多个安装: {', '.join(candidates)}",
            f"请使用完整的版本号，或清理 versions/{tool} 目录中的重复条目",
        )


class UnresolvableAlias(ResolutionError):
    """lts、latest 等需要远程版本目录才能解析的别名。"""

    def __init__(self, tool: str, raw: str):
        self.tool = tool
        self.raw = raw
        super().__init__(
            f"{tool} 的别名 '{raw}' 无法在本地解析",
            f"运行 rtvm list {tool} --remote 查看可用版本，并明确安装一个版本",
        )


class Resolver:
    """
    版本解析器类。

    查询安装注册表和别名存储，把 VersionSpec 解析为 InstalledVersion。
    """

    def __init__(self, registry: IInstallationRegistry, alias_store: IAliasStore):
        """
        初始化版本解析器。

        参数:
            registry: 安装注册表
            alias_store: 别名存储
        """
        self.registry = registry
        self.alias_store = alias_store

    def resolve(self, tool: str, spec: VersionSpec) -> InstalledVersion:
        """
        解析版本需求。

        规则:
            - lts、latest 需要远程目录，抛出 UnresolvableAlias；
            - 别名查别名存储，目标版本直接在注册表中查找，不会链式解析；
            - 数字需求匹配所有已指定分量，原始字符串完全相同的安装优先，
              否则取版本最高者；
            - 字面量先作为用户别名查找，再按原始字符串（忽略大小写和前缀字符）精确匹配。

        参数:
            tool: 工具名称
            spec: 版本需求

        返回:
            已安装版本

        抛出:
            ResolutionError: 各类解析失败
        """
        if isinstance(spec, AliasSpec):
            if spec.name in REMOTE_ALIASES:
                raise UnresolvableAlias(tool, spec.raw)
            return self._resolve_alias(tool, spec.name)

        if spec.is_literal:
            if self.alias_store.get(tool, spec.raw) is not None:
                logger.debug(f"{tool} 版本 '{spec.raw}' 按用户别名解析")
                return self._resolve_alias(tool, spec.raw)
            return self._resolve_literal(tool, spec)

        return self._resolve_numeric(tool, spec)

    def resolve_result(self, tool: str, spec: VersionSpec) -> ResolutionResult:
        """解析版本需求，以结果对象代替异常返回。"""
        try:
            return ResolutionResult(installed=self.resolve(tool, spec))
        except ResolutionError as e:
            return ResolutionResult(error=e)

    def _resolve_alias(self, tool: str, name: str) -> InstalledVersion:
        target = self.alias_store.get(tool, name)
        if target is None:
            raise AliasNotFound(tool, name)

        installed = self.registry.get(tool, target)
        if installed is None:
            raise AliasResolutionDangling(tool, name, target)

        logger.debug(f"{tool} 别名 {name} -> {installed.raw}")
        return installed

    def _resolve_numeric(self, tool: str, spec: ExactSpec) -> InstalledVersion:
        candidates = [v for v in self.registry.list(tool) if spec.matches(v)]
        if not candidates:
            raise VersionNotInstalled(tool, spec.raw)

        wanted = normalize_raw(spec.raw)
        for candidate in candidates:
            if normalize_raw(candidate.raw) == wanted:
                return candidate

        # 注册表已按版本降序排列
        return candidates[0]

    def _resolve_literal(self, tool: str, spec: ExactSpec) -> InstalledVersion:
        wanted = normalize_raw(spec.raw)
        matches = [v for v in self.registry.list(tool) if normalize_raw(v.raw) == wanted]

        if not matches:
            raise VersionNotInstalled(tool, spec.raw)
        if len(matches) > 1:
            raise AmbiguousLiteralVersion(tool, spec.raw, [v.raw for v in matches])
        return matches[0]
