"""
速率限制器模块。

使用 Token Bucket 策略控制对远程版本目录和下载源的请求频率。
"""

import threading
import time
from typing import Callable, Optional


class RateLimiter:
    """
    速率限制器类。

    按固定速率生成 token，每次请求消耗一个 token；
    requests_per_second 为 0 或 None 时不做限制。
    """

    def __init__(
        self,
        requests_per_second: Optional[float] = None,
        max_tokens: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        初始化速率限制器。

        参数:
            requests_per_second: 每秒允许的请求数
            max_tokens: Token Bucket 的最大容量，默认为 requests_per_second
            clock: 时钟函数，测试中可替换
            sleep: 等待函数，测试中可替换
        """
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep
        self.requests_per_second = requests_per_second or None

        if self.requests_per_second:
            self.max_tokens = float(max_tokens or self.requests_per_second)
            self.tokens = self.max_tokens
            self._last_refill = clock()
        else:
            self.max_tokens = None
            self.tokens = None
            self._last_refill = None

    @property
    def enabled(self) -> bool:
        """是否启用限流。"""
        return self.requests_per_second is not None

    def acquire(self) -> None:
        """
        获取请求权限，必要时等待。

        此方法会阻塞直到可以发送请求。
        """
        if not self.enabled:
            return

        with self._lock:
            self._refill()
            while self.tokens < 1.0:
                self._sleep((1.0 - self.tokens) / self.requests_per_second)
                self._refill()
            self.tokens -= 1.0

    def _refill(self) -> None:
        """补充 Token Bucket 中的 token。"""
        now = self._clock()
        elapsed = now - self._last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.requests_per_second)
        self._last_refill = now
