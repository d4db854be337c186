"""
Rtvm 命令行接口模块。

use、env、auto 命令在 stdout 上输出供 shell eval 的环境变量语句，
提示信息和日志写入 stderr。
"""

import argparse
import json
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import Optional

from rtvm.core.activator import ActivationError
from rtvm.core.alias_store import AliasStoreError
from rtvm.core.config_manager import ConfigManager, ConfigSaveError, ConfigValidationError
from rtvm.core.download_manager import DownloadManagerError
from rtvm.core.models import EnvironmentMutation, Provenance
from rtvm.core.registry import RegistryError
from rtvm.core.remote_fetcher import RemoteFetcherError
from rtvm.core.resolver import VersionManagerError
from rtvm.core.tool_plugin import ToolPluginError
from rtvm.core.version_manager import VersionManager
from rtvm.core.version_utils import group_versions_by_major
from rtvm.utils.input_validator import InputValidationError
from rtvm.utils.logger import get_logger, set_log_level

logger = get_logger()

SHELLS = ["bash", "zsh", "sh", "fish", "powershell"]

HANDLED_ERRORS = (
    VersionManagerError,
    ActivationError,
    AliasStoreError,
    RegistryError,
    ToolPluginError,
    RemoteFetcherError,
    DownloadManagerError,
    ConfigValidationError,
    ConfigSaveError,
    InputValidationError,
)


def create_parser() -> argparse.ArgumentParser:
    """
    创建并配置命令行参数解析器。

    返回:
        配置好的 ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog="rtvm",
        description="Rtvm - 运行时版本管理器",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  rtvm list java                     列出已安装的 Java 版本
  eval "$(rtvm use java 21)"         在当前 shell 切换到 Java 21 的最新已安装版本
  rtvm alias node default 20.11.1    把 Node.js 20.11.1 设为新 shell 的默认版本
  rtvm install node lts              安装最新的 Node.js LTS 版本
  rtvm import java /opt/jdk-17       导入已有的 JDK 安装
  rtvm detect java --import          探测并导入本机已有的 JDK
  rtvm exec java 17 -- mvn package   用 Java 17 运行一次构建，不改变当前版本
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="启用详细输出",
    )

    parser.add_argument(
        "--root",
        type=str,
        default=None,
        help="数据根目录（默认为 RTVM_DIR 或 ~/.rtvm）",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="命令",
        description="可用的 CLI 命令",
    )

    list_parser = subparsers.add_parser("list", help="列出工具的已安装版本")
    list_parser.add_argument("tool", nargs="?", default=None, help="工具名称 (java, node, python)")
    list_parser.add_argument("--remote", "-r", action="store_true", help="显示远程可用版本")
    list_parser.add_argument(
        "--format",
        "-f",
        choices=["table", "json", "simple"],
        default="simple",
        help="输出格式",
    )

    use_parser = subparsers.add_parser("use", help="切换到指定版本")
    use_parser.add_argument("tool", help="工具名称")
    use_parser.add_argument("version", help="版本号或别名，如 21、21.0.7、default")
    _add_shell_argument(use_parser)

    current_parser = subparsers.add_parser("current", help="显示最近一次 use 的版本")
    current_parser.add_argument("tool", help="工具名称")

    env_parser = subparsers.add_parser("env", help="输出新 shell 的环境变量（项目版本文件优先，其次 default）")
    env_parser.add_argument("tool", help="工具名称")
    env_parser.add_argument("--dir", "-d", default=None, help="工作目录（默认为当前目录）")
    _add_shell_argument(env_parser)

    auto_parser = subparsers.add_parser("auto", help="根据项目版本文件自动切换")
    auto_parser.add_argument("tool", help="工具名称")
    auto_parser.add_argument("--dir", "-d", default=None, help="项目目录（默认为当前目录）")
    _add_shell_argument(auto_parser)

    alias_parser = subparsers.add_parser("alias", help="显示、设置或删除别名")
    alias_parser.add_argument("tool", help="工具名称")
    alias_parser.add_argument("name", nargs="?", default=None, help="别名")
    alias_parser.add_argument("version", nargs="?", default=None, help="目标版本（必须已安装）")
    alias_parser.add_argument("--delete", action="store_true", help="删除别名")

    local_parser = subparsers.add_parser("local", help="显示或写入项目版本文件")
    local_parser.add_argument("tool", help="工具名称")
    local_parser.add_argument("version", nargs="?", default=None, help="要写入的版本")
    local_parser.add_argument("--dir", "-d", default=None, help="项目目录（默认为当前目录）")

    which_parser = subparsers.add_parser("which", help="显示目录中会选用的版本及来源")
    which_parser.add_argument("tool", help="工具名称")
    which_parser.add_argument("--dir", "-d", default=None, help="工作目录（默认为当前目录）")

    install_parser = subparsers.add_parser("install", help="下载并安装指定版本")
    install_parser.add_argument("tool", help="工具名称")
    install_parser.add_argument("version", help="要安装的版本，如 21、20.11、lts、latest")

    uninstall_parser = subparsers.add_parser("uninstall", help="卸载指定版本")
    uninstall_parser.add_argument("tool", help="工具名称")
    uninstall_parser.add_argument("version", help="要卸载的完整版本号")
    uninstall_parser.add_argument("--force", action="store_true", help="允许卸载当前激活的版本")

    import_parser = subparsers.add_parser("import", help="导入已存在的外部安装")
    import_parser.add_argument("tool", help="工具名称")
    import_parser.add_argument("path", help="外部安装目录")
    import_parser.add_argument("--version", dest="as_version", default=None, help="指定版本号（默认自动检测）")

    detect_parser = subparsers.add_parser("detect", help="探测本机已有的工具安装")
    detect_parser.add_argument("tool", help="工具名称")
    detect_parser.add_argument(
        "--import", dest="import_found", action="store_true", help="导入所有探测到的安装"
    )
    detect_parser.add_argument("--format", "-f", choices=["simple", "json"], default="simple", help="输出格式")

    exec_parser = subparsers.add_parser("exec", help="以指定版本运行一条命令，不改变当前版本")
    exec_parser.add_argument("tool", help="工具名称")
    exec_parser.add_argument("version", help="版本号或别名")
    exec_parser.add_argument("cmd", nargs=argparse.REMAINDER, help="要执行的命令，建议放在 -- 之后")

    subparsers.add_parser("tools", help="列出所有支持的工具")

    config_parser = subparsers.add_parser("config", help="显示或编辑配置")
    config_parser.add_argument("--set", "-s", type=str, help="设置配置值（格式：key=value）")
    config_parser.add_argument("--reset", action="store_true", help="重置为默认配置")

    return parser


def _add_shell_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--shell",
        choices=SHELLS,
        default=None,
        help="输出语句的 shell 类型（默认自动检测）",
    )


def detect_shell() -> str:
    """根据运行环境推断 shell 类型。"""
    if os.name == "nt":
        return "powershell"
    shell = os.path.basename(os.environ.get("SHELL", ""))
    return shell if shell in SHELLS else "bash"


def render_mutation(
    mutation: EnvironmentMutation,
    shell: str,
    path_value: Optional[str] = None,
) -> str:
    """
    把环境变量变更渲染为 shell 语句。

    参数:
        mutation: 环境变量变更
        shell: shell 类型
        path_value: 当前 PATH 值，默认读取本进程的 PATH

    返回:
        可以被 shell eval 的语句
    """
    if path_value is None:
        path_value = os.environ.get("PATH", "")
    new_path = mutation.apply_to_path(path_value)
    name, value = mutation.home_var

    if shell == "fish":
        entries = " ".join(shlex.quote(p) for p in new_path.split(os.pathsep) if p)
        return f"set -gx {name} {shlex.quote(value)};\nset -gx PATH {entries};"
    if shell == "powershell":
        return (
            f"$env:{name} = {_ps_quote(value)}\n"
            f"$env:PATH = {_ps_quote(new_path)}"
        )
    return f"export {name}={shlex.quote(value)}\nexport PATH={shlex.quote(new_path)}"


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _info(message: str) -> None:
    print(message, file=sys.stderr)


def run_cli(args: argparse.Namespace) -> int:
    """
    运行命令行接口。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码（0 表示成功）
    """
    if args.verbose:
        set_log_level(logging.DEBUG)

    if args.command is None:
        _info("未指定命令。使用 --help 查看帮助信息。")
        return 1

    command_handlers = {
        "list": handle_list,
        "use": handle_use,
        "current": handle_current,
        "env": handle_env,
        "auto": handle_auto,
        "alias": handle_alias,
        "local": handle_local,
        "which": handle_which,
        "install": handle_install,
        "uninstall": handle_uninstall,
        "import": handle_import,
        "detect": handle_detect,
        "exec": handle_exec,
        "tools": handle_tools,
        "config": handle_config,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        _info(f"未知命令: {args.command}")
        return 1

    try:
        return handler(args)
    except HANDLED_ERRORS as e:
        logger.error(f"{args.command} 命令失败: {e}")
        _info(f"错误: {e}")
        remediation = getattr(e, "remediation", "")
        if remediation:
            _info(f"建议: {remediation}")
        return 1


def _get_manager(args: argparse.Namespace) -> VersionManager:
    root = Path(args.root).expanduser() if getattr(args, "root", None) else None
    return VersionManager(ConfigManager(root_dir=root))


def _dir_arg(args: argparse.Namespace) -> Path:
    return Path(args.dir).expanduser() if getattr(args, "dir", None) else Path.cwd()


def handle_list(args: argparse.Namespace) -> int:
    """
    处理 list 命令：列出已安装或远程可用的版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    version_manager = _get_manager(args)

    if not args.tool:
        return _list_all_tools(version_manager, args.format)

    tool = version_manager.get_plugin(args.tool).tool

    if args.remote:
        _info(f"正在获取 {tool} 的远程版本...")
        versions = version_manager.list_remote_versions(tool)
        if args.format == "json":
            print(json.dumps(versions, indent=2, ensure_ascii=False))
        elif args.format == "table":
            for group in group_versions_by_major(versions):
                lts = " (LTS)" if group["has_lts"] else ""
                names = ", ".join(v["version"] for v in group["versions"][:8])
                print(f"{group['major_version']:>4}{lts}: {names}")
        else:
            for v in versions[:30]:
                flags = [flag for flag, on in (("LTS", v.get("lts")), ("已安装", v.get("installed"))) if on]
                suffix = f"  ({', '.join(flags)})" if flags else ""
                print(f"  {v['version']}{suffix}")
            if len(versions) > 30:
                print(f"  ... 还有 {len(versions) - 30} 个版本")
        return 0

    versions = version_manager.list_versions(tool)
    if args.format == "json":
        print(json.dumps({"tool": tool, "versions": versions}, indent=2, ensure_ascii=False))
        return 0

    if not versions:
        _info(f"未找到 {tool} 的已安装版本")
        return 0

    for v in versions:
        marker = "*" if v["current"] else " "
        extras = []
        if v["provenance"] == "imported":
            extras.append("imported")
        extras.extend(v["aliases"])
        suffix = f"  ({', '.join(extras)})" if extras else ""
        if args.format == "table":
            print(f"{marker} {v['version']:<20} {v['path']}{suffix}")
        else:
            print(f"{marker} {v['version']}{suffix}")
    return 0


def _list_all_tools(version_manager: VersionManager, output_format: str) -> int:
    rows = []
    for info in version_manager.list_tools():
        current = version_manager.current_version(info["tool"])
        rows.append({"tool": info["tool"], "current": current.raw if current else None})

    if output_format == "json":
        print(json.dumps(rows, indent=2, ensure_ascii=False))
    else:
        for row in rows:
            print(f"  {row['tool']}: {row['current'] or '未设置'}")
    return 0


def handle_use(args: argparse.Namespace) -> int:
    """
    处理 use 命令：切换到指定版本，并输出环境变量语句。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    version_manager = _get_manager(args)
    outcome = version_manager.switch_version(args.tool, args.version)

    print(render_mutation(outcome.mutation, args.shell or detect_shell()))
    _info(f"已切换 {outcome.tool} 到 {outcome.installed.raw}")
    return 0


def handle_current(args: argparse.Namespace) -> int:
    """处理 current 命令。"""
    version_manager = _get_manager(args)
    current = version_manager.current_version(args.tool)
    if current is None:
        _info(f"{args.tool} 当前版本未设置")
        return 0
    print(current.raw)
    return 0


def handle_env(args: argparse.Namespace) -> int:
    """
    处理 env 命令：新 shell 初始化时输出环境变量语句，不改写 current。
    """
    version_manager = _get_manager(args)
    mutation = version_manager.shell_env(args.tool, _dir_arg(args))
    if mutation is not None:
        print(render_mutation(mutation, args.shell or detect_shell()))
    return 0


def handle_auto(args: argparse.Namespace) -> int:
    """
    处理 auto 命令：目录中有版本文件时切换，否则不输出任何内容。
    """
    version_manager = _get_manager(args)
    outcome = version_manager.auto_switch(args.tool, _dir_arg(args))
    if outcome is None:
        return 0

    print(render_mutation(outcome.mutation, args.shell or detect_shell()))
    _info(f"已根据项目版本文件切换 {outcome.tool} 到 {outcome.installed.raw}")
    return 0


def handle_alias(args: argparse.Namespace) -> int:
    """
    处理 alias 命令。

    不带别名时列出所有别名；带 --delete 时删除；只带别名时显示目标；
    同时给出版本时设置别名。
    """
    version_manager = _get_manager(args)

    if args.name is None:
        aliases = version_manager.list_aliases(args.tool)
        if not aliases:
            _info(f"{args.tool} 没有别名")
        for name, target in aliases.items():
            print(f"{name} -> {target}")
        return 0

    if args.delete:
        version_manager.remove_alias(args.tool, args.name)
        _info(f"已删除 {args.tool} 别名 {args.name}")
        return 0

    if args.version is None:
        target = version_manager.list_aliases(args.tool).get(args.name)
        if target is None:
            _info(f"{args.tool} 别名 {args.name} 不存在")
            return 1
        print(target)
        return 0

    version_manager.set_alias(args.tool, args.name, args.version)
    _info(f"已设置 {args.tool} 别名 {args.name} -> {args.version}")
    return 0


def handle_local(args: argparse.Namespace) -> int:
    """处理 local 命令：写入或显示项目版本文件。"""
    version_manager = _get_manager(args)
    directory = _dir_arg(args)

    if args.version:
        marker = version_manager.write_local(args.tool, args.version, directory)
        _info(f"已写入 {marker}")
        return 0

    located = version_manager.project_files.locate(args.tool, directory)
    if located is None:
        _info(f"{directory} 中没有 {args.tool} 版本文件")
        return 1
    marker, raw = located
    print(raw)
    _info(f"来自 {marker}")
    return 0


def handle_which(args: argparse.Namespace) -> int:
    """处理 which 命令。"""
    version_manager = _get_manager(args)
    selection = version_manager.which(args.tool, _dir_arg(args))
    if selection is None:
        _info(f"没有为 {args.tool} 配置项目版本文件或 default 别名")
        return 1

    installed = selection["installed"]
    print(installed.path)
    source = selection["marker"] or f"别名 {selection['source']}"
    _info(f"{args.tool} {installed.raw}（来源: {source}，需求: {selection['spec']}）")
    return 0


def handle_install(args: argparse.Namespace) -> int:
    """
    处理 install 命令：下载并安装指定版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    version_manager = _get_manager(args)
    _info(f"正在安装 {args.tool} {args.version}...")

    def progress(downloaded: int, total: int):
        percent = int(downloaded / total * 100) if total > 0 else 0
        bar_len = 40
        filled = int(bar_len * percent / 100)
        bar = "=" * filled + "-" * (bar_len - filled)
        print(f"\r[{bar}] {percent}% ({downloaded}/{total} 字节)", end="", file=sys.stderr, flush=True)

    installed = version_manager.install_version(args.tool, args.version, progress)
    _info(f"\n成功安装 {installed.tool} {installed.raw}: {installed.path}")
    return 0


def handle_uninstall(args: argparse.Namespace) -> int:
    """处理 uninstall 命令：卸载指定版本。"""
    version_manager = _get_manager(args)
    installed = version_manager.uninstall(args.tool, args.version, force=args.force)
    if installed.provenance == Provenance.IMPORTED:
        _info(f"已移除导入的 {installed.tool} {installed.raw}（源目录未删除）")
    else:
        _info(f"成功卸载 {installed.tool} {installed.raw}")
    return 0


def handle_import(args: argparse.Namespace) -> int:
    """处理 import 命令：导入外部安装。"""
    version_manager = _get_manager(args)
    installed = version_manager.import_version(args.tool, Path(args.path), args.as_version)
    _info(f"已导入 {installed.tool} {installed.raw}: {installed.path}")
    return 0


def handle_detect(args: argparse.Namespace) -> int:
    """
    处理 detect 命令：列出本机已有的安装，带 --import 时全部导入。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    version_manager = _get_manager(args)
    tool = version_manager.get_plugin(args.tool).tool
    detected = version_manager.detect_installations(tool)

    if args.format == "json":
        print(json.dumps([d.to_dict() for d in detected], indent=2, ensure_ascii=False))
    elif not detected:
        _info(f"未在本机发现 {tool} 安装")
    else:
        for d in detected:
            suffix = f", 已导入为 {d.registered}" if d.registered else ""
            print(f"  {d.version or '?':<20} {d.path}  ({d.source}{suffix})")

    if not args.import_found:
        return 0

    imported, skipped = version_manager.import_detected(detected)
    for installed in imported:
        _info(f"已导入 {installed.tool} {installed.raw}: {installed.path}")
    for d in skipped:
        if d.registered:
            continue
        reason = "无法确定版本" if not d.version else f"无法导入为 {d.version}"
        _info(f"跳过 {d.path}: {reason}，可用 rtvm import {tool} <路径> --version <版本> 手动导入")
    return 0


def handle_exec(args: argparse.Namespace) -> int:
    """处理 exec 命令：返回被执行命令的退出码。"""
    command = list(args.cmd)
    if command and command[0] == "--":
        command = command[1:]

    version_manager = _get_manager(args)
    return version_manager.exec_command(args.tool, args.version, command)


def handle_tools(args: argparse.Namespace) -> int:
    """
    处理 tools 命令：列出所有支持的工具。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    version_manager = _get_manager(args)

    for info in version_manager.list_tools():
        print(f"{info['tool']}:")
        print(f"    名称: {info['display_name']}")
        print(f"    环境变量: {info['home_var']}")
        print(f"    版本文件: {', '.join(info['marker_files'])}")
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """
    处理 config 命令：显示或编辑配置。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    root = Path(args.root).expanduser() if args.root else None
    config_manager = ConfigManager(root_dir=root)

    if args.reset:
        config_manager.reset_to_default()
        _info("配置已重置为默认值")
        return 0

    if args.set:
        key, _, value = args.set.partition("=")
        if not key or not value:
            _info("格式无效。请使用: key=value")
            return 1

        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            pass

        config_manager.set(key, value)
        _info(f"已设置 {key} = {value}")
        return 0

    print(json.dumps(config_manager.get_config(), indent=2, ensure_ascii=False))
    return 0
