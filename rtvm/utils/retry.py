"""
重试机制工具模块。

为远程版本目录查询和安装包下载提供指数退避重试策略。
"""

import random
import time
from typing import Any, Callable, Iterable, Optional, TypeVar

import requests

from rtvm.utils.logger import get_logger

logger = get_logger()

T = TypeVar("T")

RETRYABLE_EXCEPTIONS = (
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
    requests.exceptions.ChunkedEncodingError,
)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class RetryHandler:
    """
    重试处理器类。

    实现指数退避重试策略，只对网络层的临时性错误重试，
    其余异常原样抛出。
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        retryable_status_codes: Optional[Iterable[int]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        初始化重试处理器。

        参数:
            max_retries: 最大重试次数
            base_delay: 基础延迟时间（秒）
            max_delay: 最大延迟时间（秒）
            backoff_factor: 退避因子
            jitter: 是否添加随机抖动
            retryable_status_codes: 可重试的 HTTP 状态码
            sleep: 等待函数，测试中可替换
        """
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.retryable_status_codes = frozenset(
            retryable_status_codes if retryable_status_codes is not None else RETRYABLE_STATUS_CODES
        )
        self._sleep = sleep

    def _calculate_delay(self, attempt: int) -> float:
        """
        计算第 n 次重试的延迟时间。

        参数:
            attempt: 重试次数（从 0 开始）

        返回:
            延迟时间（秒）
        """
        delay = min(self.base_delay * (self.backoff_factor ** attempt), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random() * 0.5
        return delay

    def is_retryable(self, exception: BaseException) -> bool:
        """
        判断错误是否可重试。

        参数:
            exception: 异常对象

        返回:
            可重试返回 True，否则返回 False
        """
        if isinstance(exception, requests.exceptions.HTTPError):
            response = exception.response
            return response is not None and response.status_code in self.retryable_status_codes
        return isinstance(exception, RETRYABLE_EXCEPTIONS)

    def execute(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        执行函数，失败时自动重试。

        参数:
            func: 要执行的函数
            *args: 函数位置参数
            **kwargs: 函数关键字参数

        返回:
            函数执行结果

        抛出:
            不可重试的异常立即抛出；超过最大重试次数后抛出最后一次异常
        """
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                if attempt >= self.max_retries:
                    logger.error(f"已达到最大重试次数 {self.max_retries}，放弃重试: {e}")
                    raise
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"网络请求失败 (尝试 {attempt + 1}/{self.max_retries + 1}): {e}，"
                    f"{delay:.2f} 秒后重试..."
                )
                self._sleep(delay)
                attempt += 1
