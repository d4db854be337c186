"""
原子文件写入模块。

先写入同目录下的临时文件，再通过 os.replace 原子替换目标文件，
保证并发读取者只会看到完整的旧内容或完整的新内容。
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

TEMP_SUFFIX = ".tmp"


def atomic_write_text(file_path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    原子写入文本文件，防止写入中断导致文件损坏。

    每次写入使用唯一的临时文件名，多个进程同时写入同一目标时，
    最后一次成功的 rename 生效。

    参数:
        file_path: 目标文件路径
        content: 文本内容
        encoding: 文件编码
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(
        dir=str(file_path.parent),
        prefix=f".{file_path.name}.",
        suffix=TEMP_SUFFIX,
    )
    temp_path = Path(temp_name)

    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, file_path)
    except BaseException:
        if temp_path.exists():
            temp_path.unlink()
        raise


def atomic_save_json(file_path: Path, data: Any, indent: int = 2) -> None:
    """
    原子保存 JSON 数据到文件。

    参数:
        file_path: 目标文件路径
        data: 要保存的数据
        indent: JSON 缩进
    """
    content = json.dumps(data, indent=indent, ensure_ascii=False)
    atomic_write_text(file_path, content + "\n")


def is_temp_file(file_path: Path) -> bool:
    """判断文件是否为未完成的原子写入临时文件。"""
    name = Path(file_path).name
    return name.startswith(".") and name.endswith(TEMP_SUFFIX)
