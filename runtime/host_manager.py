"""检测宿主的单例管理：幂等创建，以及检测 / 校准两种模式的互斥"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from runtime.bridge import ContextBridge
from runtime.context import Context
from runtime.detector_host import DetectorHost

logger = logging.getLogger(__name__)


class HostCreation(Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class PipelineLock:
    """同一条采集管线同一时刻只能处于检测或校准中的一种模式"""

    DETECTION = "detection"
    CALIBRATION = "calibration"

    def __init__(self):
        self._lock = threading.Lock()
        self._mode: Optional[str] = None

    @property
    def mode(self) -> Optional[str]:
        with self._lock:
            return self._mode

    def acquire(self, mode: str) -> bool:
        """占用管线；已被同一模式占用时视为成功"""
        with self._lock:
            if self._mode is None or self._mode == mode:
                self._mode = mode
                return True
            return False

    def release(self, mode: str) -> None:
        with self._lock:
            if self._mode == mode:
                self._mode = None


class HostManager:
    """
    持有唯一的 桥接 + 检测宿主 上下文对。

    ensure_created() 可以重复调用：第二次调用返回 ALREADY_EXISTS，
    不会报错，也不会创建第二个实例。
    """

    def __init__(self, camera_factory: Callable, extractor_factory: Callable,
                 frame_interval_ms: int = 100, scheduler=None, autostart: bool = True):
        self._camera_factory = camera_factory
        self._extractor_factory = extractor_factory
        self._frame_interval_ms = frame_interval_ms
        self._scheduler = scheduler
        self._autostart = autostart
        self._lock = threading.Lock()
        self._created = False
        self._bridge: Optional[ContextBridge] = None

    @property
    def created(self) -> bool:
        with self._lock:
            return self._created

    @property
    def bridge(self) -> Optional[ContextBridge]:
        return self._bridge

    def ensure_created(self, owner: Context) -> HostCreation:
        """
        确保检测宿主存在。

        Args:
            owner: 接收桥接事件的上下文

        Returns:
            CREATED 或 ALREADY_EXISTS
        """
        with self._lock:
            if self._created:
                self._bridge.connect(owner)
                logger.debug("检测宿主已存在")
                return HostCreation.ALREADY_EXISTS

            host = DetectorHost(self._extractor_factory, scheduler=self._scheduler)
            bridge = ContextBridge(
                host,
                self._camera_factory,
                frame_interval_ms=self._frame_interval_ms,
                scheduler=self._scheduler,
            )
            bridge.connect(owner)
            if self._autostart:
                host.start()
                bridge.start()

            self._bridge = bridge
            self._created = True
            logger.info("检测宿主已创建")
            return HostCreation.CREATED

    def close(self) -> None:
        with self._lock:
            if not self._created:
                return
            self._bridge.close()
            self._bridge.host.close()
            self._bridge = None
            self._created = False
            logger.info("检测宿主已关闭")
