"""
Rtvm 工具模块。

提供日志记录、原子文件写入、重试、限流和输入验证等工具功能。
"""

from .logger import get_logger
from .atomic_file import atomic_write_text, atomic_save_json
from .retry import RetryHandler
from .rate_limiter import RateLimiter
from .input_validator import InputValidator, InputValidationError

__all__ = [
    "get_logger",
    "atomic_write_text",
    "atomic_save_json",
    "RetryHandler",
    "RateLimiter",
    "InputValidator",
    "InputValidationError",
]
