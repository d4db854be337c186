"""
远程版本获取模块。

从各工具的远程版本目录（Node.js index.json、Adoptium API、python.org 目录页）
获取可用版本列表，并解析 lts、latest 等需要联网的版本需求。
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from rtvm.core.config_manager import ConfigManager
from rtvm.core.interfaces import IRemoteFetcher
from rtvm.core.models import AliasSpec, VersionSpec
from rtvm.core.tool_plugin import current_arch, current_os
from rtvm.core.version_utils import normalize_raw, parse_installed_version, sort_versions_desc
from rtvm.utils.logger import get_logger
from rtvm.utils.rate_limiter import RateLimiter
from rtvm.utils.retry import RetryHandler

logger = get_logger()

REQUEST_TIMEOUT = 10


class RemoteFetcherError(Exception):
    """远程获取错误异常。"""

    remediation = "请检查工具的 catalog 配置，或运行 rtvm list <tool> --remote 查看可用版本"


class NetworkError(RemoteFetcherError):
    """网络错误异常。"""

    remediation = "请检查网络连接或代理设置后重试"


class MirrorStatus:
    """
    镜像源状态跟踪类。

    记录每个版本目录地址的连续失败次数，优先尝试最近成功的地址。
    """

    def __init__(self):
        self._failures: Dict[str, int] = {}
        self._reasons: Dict[str, str] = {}
        self._last_success: Dict[str, float] = {}

    def record_success(self, url: str) -> None:
        self._failures[url] = 0
        self._reasons.pop(url, None)
        self._last_success[url] = datetime.now().timestamp()

    def record_failure(self, url: str, reason: str) -> None:
        self._failures[url] = self._failures.get(url, 0) + 1
        self._reasons[url] = reason

    def get_sorted_mirrors(self, urls: List[str]) -> List[str]:
        """按（是否成功过、连续失败次数、最近成功时间）排序，原顺序作为决胜条件。"""
        def priority(indexed):
            index, url = indexed
            succeeded = url in self._last_success
            return (
                0 if succeeded else 1,
                self._failures.get(url, 0),
                -self._last_success.get(url, 0.0),
                index,
            )
        return [url for _, url in sorted(enumerate(urls), key=priority)]

    def get_failure_summary(self) -> str:
        summaries = [
            f"{url}: {reason} (连续失败 {self._failures.get(url, 0)} 次)"
            for url, reason in self._reasons.items()
        ]
        return "; ".join(summaries) if summaries else "无失败记录"


class RemoteFetcher(IRemoteFetcher):
    """
    远程版本获取器类。

    目录类型由工具模板的 catalog.type 决定：
    nodejs_index、adoptium 或 html_index。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        retry_handler: Optional[RetryHandler] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """
        初始化远程版本获取器。

        参数:
            config_manager: 配置管理器实例
            retry_handler: 重试处理器，默认按配置的重试次数创建
            rate_limiter: 速率限制器，默认按配置的请求频率创建
        """
        self.config_manager = config_manager
        self.retry_handler = retry_handler or RetryHandler(
            max_retries=config_manager.get_download_retry_count()
        )
        self.rate_limiter = rate_limiter or RateLimiter(
            requests_per_second=config_manager.get_request_rate_limit()
        )
        self.mirror_status = MirrorStatus()
        self._memory_cache: Dict[str, Dict[str, Any]] = {}

    def _catalog(self, tool: str) -> Dict[str, Any]:
        catalog = self.config_manager.get_tool_template(tool).get("catalog")
        if not catalog or not catalog.get("urls"):
            raise RemoteFetcherError(f"未配置 {tool} 的远程版本目录")
        return catalog

    def _get(self, url: str) -> requests.Response:
        self.rate_limiter.acquire()
        logger.debug(f"请求 {url}")
        response = requests.get(url, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return response

    def _cache_is_fresh(self, cached: Dict[str, Any]) -> bool:
        try:
            last_update = datetime.fromisoformat(cached.get("last_update", ""))
        except (TypeError, ValueError):
            return False
        age = (datetime.now() - last_update).total_seconds()
        return age < self.config_manager.get_cache_expire_time()

    def get_remote_versions(self, tool: str, use_cache: bool = True) -> List[Dict[str, Any]]:
        """
        获取远程可用的工具版本。

        依次尝试模板中的各个目录地址；全部失败时退回到过期的缓存，
        没有缓存则抛出 NetworkError。

        参数:
            tool: 工具名称
            use_cache: 是否使用未过期的缓存

        返回:
            版本信息列表（version、lts、release_date、download_url），按版本降序
        """
        cache_key = f"{tool}_versions"
        catalog = self._catalog(tool)

        if use_cache:
            cached = self._memory_cache.get(cache_key) or self.config_manager.get_cache().get(cache_key)
            if cached and self._cache_is_fresh(cached):
                logger.info(f"使用缓存的 {tool} 版本信息")
                self._memory_cache[cache_key] = cached
                return cached.get("versions", [])

        errors = []
        for url in self.mirror_status.get_sorted_mirrors(catalog["urls"]):
            try:
                logger.info(f"尝试从 {url} 获取 {tool} 版本")
                versions = self.retry_handler.execute(self._fetch_catalog, tool, url, catalog)
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.warning(f"从 {url} 获取 {tool} 版本失败: {e}")
                self.mirror_status.record_failure(url, str(e))
                errors.append(f"{url}: {e}")
                continue

            if not versions:
                logger.warning(f"{url} 返回空版本列表")
                self.mirror_status.record_failure(url, "空版本列表")
                errors.append(f"{url}: 空版本列表")
                continue

            self.mirror_status.record_success(url)
            versions = sort_versions_desc(versions)
            self._update_cache(cache_key, versions)
            logger.info(f"成功从 {url} 获取 {len(versions)} 个 {tool} 版本")
            return versions

        logger.error(f"所有版本目录获取 {tool} 版本失败: {self.mirror_status.get_failure_summary()}")

        stale = self._memory_cache.get(cache_key) or self.config_manager.get_cache().get(cache_key)
        if stale:
            logger.warning(f"网络错误，使用过期缓存的 {tool} 版本信息")
            return stale.get("versions", [])
        raise NetworkError(f"无法获取 {tool} 远程版本: {'; '.join(errors)}")

    def _fetch_catalog(self, tool: str, url: str, catalog: Dict[str, Any]) -> List[Dict[str, Any]]:
        catalog_type = catalog.get("type")
        if catalog_type == "nodejs_index":
            entries = self._parse_nodejs_index(self._get(url).json())
        elif catalog_type == "adoptium":
            entries = self._parse_adoptium(self._get(url).json())
        elif catalog_type == "html_index":
            pattern = catalog.get("version_pattern", r'href="(\d+\.\d+\.\d+)/"')
            entries = self._parse_html_index(self._get(url).text, pattern)
        else:
            raise RemoteFetcherError(f"{tool} 的版本目录类型不受支持: {catalog_type}")

        for entry in entries:
            entry["download_url"] = self._render_download_url(catalog, entry["version"], url)
        return entries

    @staticmethod
    def _parse_nodejs_index(data: Any) -> List[Dict[str, Any]]:
        if not isinstance(data, list):
            raise ValueError("index.json 格式无效")
        versions = []
        for item in data:
            if not isinstance(item, dict) or not item.get("version"):
                continue
            lts = item.get("lts")
            versions.append({
                "version": str(item["version"]).lstrip("v"),
                "lts": bool(lts),
                "lts_name": lts if isinstance(lts, str) else None,
                "release_date": item.get("date"),
            })
        return versions

    @staticmethod
    def _parse_adoptium(data: Any) -> List[Dict[str, Any]]:
        if not isinstance(data, dict):
            raise ValueError("available_releases 响应格式无效")
        lts_releases = set(data.get("available_lts_releases", []))
        return [
            {"version": str(major), "lts": major in lts_releases, "release_date": None}
            for major in data.get("available_releases", [])
        ]

    @staticmethod
    def _parse_html_index(content: str, pattern: str) -> List[Dict[str, Any]]:
        versions = []
        seen = set()
        for version in re.findall(pattern, content):
            if version in seen:
                continue
            seen.add(version)
            versions.append({"version": version, "lts": False, "release_date": None})
        return versions

    def _render_download_url(self, catalog: Dict[str, Any], version: str, mirror: str) -> str:
        """
        渲染下载地址模板，替换 {mirror}、{version}、{major}、{os}、{arch}、{ext} 等占位符。
        """
        os_name = current_os()
        major, minor, patch = parse_installed_version(version)
        ext_map = catalog.get("ext_map", {})
        variables = {
            "mirror": mirror,
            "version": version,
            "major": "" if major is None else str(major),
            "minor": "" if minor is None else str(minor),
            "patch": "" if patch is None else str(patch),
            "os": catalog.get("os_map", {}).get(os_name, os_name),
            "arch": catalog.get("arch_map", {}).get(current_arch(), current_arch()),
            "ext": ext_map.get(os_name, ext_map.get("default", "tar.gz")),
        }

        result = catalog.get("download_url_template", "")
        for key, value in variables.items():
            result = result.replace("{" + key + "}", value)
        return result

    def find_distribution(self, tool: str, version: str) -> Dict[str, Any]:
        """
        获取指定具体版本的发行包信息。

        参数:
            tool: 工具名称
            version: 具体版本号

        返回:
            包含 tool、version、download_url 的字典
        """
        catalog = self._catalog(tool)
        mirror = self.mirror_status.get_sorted_mirrors(catalog["urls"])[0]
        url = self._render_download_url(catalog, version, mirror)
        if not url:
            raise RemoteFetcherError(f"未配置 {tool} 的下载地址模板")
        return {"tool": tool, "version": version, "download_url": url}

    def resolve_alias(self, tool: str, alias: str) -> Dict[str, Any]:
        """
        在远程目录中解析 lts 或 latest。

        参数:
            tool: 工具名称
            alias: lts 或 latest

        返回:
            选中的远程版本信息
        """
        versions = self.get_remote_versions(tool)
        if alias == "lts":
            versions = [v for v in versions if v.get("lts")]
        if not versions:
            raise RemoteFetcherError(f"远程目录中没有 {tool} 的 {alias} 版本")
        return versions[0]

    def resolve_spec(self, tool: str, spec: VersionSpec) -> Dict[str, Any]:
        """
        在远程目录中选出满足需求的最新版本。

        参数:
            tool: 工具名称
            spec: 版本需求，支持 lts、latest、部分版本号和完整版本号

        返回:
            选中的远程版本信息
        """
        if isinstance(spec, AliasSpec):
            if spec.name not in ("lts", "latest"):
                raise RemoteFetcherError(f"别名 '{spec.raw}' 只能在本地解析")
            return self.resolve_alias(tool, spec.name)

        wanted = normalize_raw(spec.raw)
        for entry in self.get_remote_versions(tool):
            version = entry["version"]
            if spec.is_literal:
                if normalize_raw(version) == wanted:
                    return entry
                continue
            actual = parse_installed_version(version)
            if all(w is None or w == a for w, a in zip((spec.major, spec.minor, spec.patch), actual)):
                return entry
        raise RemoteFetcherError(f"远程目录中没有满足 {spec.raw} 的 {tool} 版本")

    def _update_cache(self, cache_key: str, versions: List[Dict[str, Any]]) -> None:
        cache_data = {
            "last_update": datetime.now().isoformat(),
            "versions": versions,
        }
        self._memory_cache[cache_key] = cache_data
        self.config_manager.set_cache(cache_key, cache_data)
