"""
项目版本文件模块。

读取和写入项目目录中的版本声明文件，如 .java-version、.nvmrc、.python-version。
每次解析都重新读取文件，不做缓存。文件的全部内容去掉首尾空白后即为版本字符串，
不识别注释和多行内容。
"""

from pathlib import Path
from typing import Iterator, Optional, Tuple

from rtvm.core.interfaces import IProjectFileReader
from rtvm.core.models import VersionSpec
from rtvm.core.tool_plugin import PluginRegistry
from rtvm.utils.atomic_file import atomic_write_text
from rtvm.utils.input_validator import InputValidator
from rtvm.utils.logger import get_logger

logger = get_logger()


class ProjectFileReader(IProjectFileReader):
    """
    项目版本文件读取器。

    默认只查找给定目录；search_parents 为 True 时逐级向上查找，
    返回离起始目录最近的版本文件。
    """

    def __init__(self, plugins: PluginRegistry, search_parents: bool = False):
        self.plugins = plugins
        self.search_parents = search_parents

    def find(
        self, tool: str, start_dir: Path, search_parents: Optional[bool] = None
    ) -> Optional[VersionSpec]:
        """
        查找目录中声明的版本需求。

        参数:
            tool: 工具名称
            start_dir: 起始目录
            search_parents: 是否向上级目录查找，默认使用构造时的设置

        返回:
            版本需求，未找到或文件内容为空时返回 None
        """
        located = self.locate(tool, start_dir, search_parents)
        if located is None:
            return None
        _, content = located
        return self.plugins.get(tool).parse_version(content)

    def locate(
        self, tool: str, start_dir: Path, search_parents: Optional[bool] = None
    ) -> Optional[Tuple[Path, str]]:
        """
        查找生效的版本文件。

        参数:
            tool: 工具名称
            start_dir: 起始目录
            search_parents: 是否向上级目录查找

        返回:
            (版本文件路径, 版本字符串)，未找到返回 None
        """
        plugin = self.plugins.get(tool)
        if search_parents is None:
            search_parents = self.search_parents

        for directory in self._candidate_dirs(Path(start_dir), search_parents):
            for marker in plugin.marker_files:
                content = self._read_marker(directory / marker)
                if content:
                    logger.debug(f"使用版本文件 {directory / marker}: {content}")
                    return directory / marker, content
        return None

    @staticmethod
    def _candidate_dirs(start_dir: Path, search_parents: bool) -> Iterator[Path]:
        start_dir = start_dir.expanduser().absolute()
        yield start_dir
        if search_parents:
            yield from start_dir.parents

    @staticmethod
    def _read_marker(marker_path: Path) -> Optional[str]:
        if not marker_path.is_file():
            return None
        try:
            content = marker_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"无法读取版本文件 {marker_path}，已忽略: {e}")
            return None
        return content.strip() or None

    def write(self, tool: str, directory: Path, raw: str) -> Path:
        """
        在目录中写入版本文件（使用该工具的首选文件名）。

        参数:
            tool: 工具名称
            directory: 项目目录
            raw: 版本字符串

        返回:
            写入的文件路径
        """
        InputValidator.validate_version_string(raw)
        plugin = self.plugins.get(tool)
        marker_path = Path(directory) / plugin.marker_files[0]
        atomic_write_text(marker_path, raw.strip() + "\n")
        logger.info(f"已写入 {marker_path}: {raw.strip()}")
        return marker_path
