"""手势副作用：缩放控制和状态徽标"""

import logging
import threading
from typing import Protocol, runtime_checkable

from models.data_models import GestureKind

logger = logging.getLogger(__name__)


@runtime_checkable
class ActionHandler(Protocol):
    """消费手势类型的副作用处理器"""

    def handle(self, kind: GestureKind, intensity: float) -> None:
        ...


@runtime_checkable
class StatusSurface(Protocol):
    """接收激活 / 未激活通知，用于渲染指示器"""

    def set_active(self, active: bool) -> None:
        ...


class ZoomController:
    """眯眼放大、睁大缩小，缩放倍数限制在 [min_zoom, max_zoom]"""

    def __init__(self, step: float = 0.1, min_zoom: float = 1.0, max_zoom: float = 3.0):
        self.step = step
        self.min_zoom = min_zoom
        self.max_zoom = max_zoom
        self._zoom = min_zoom
        self._lock = threading.Lock()

    @property
    def zoom(self) -> float:
        with self._lock:
            return self._zoom

    def handle(self, kind: GestureKind, intensity: float = 0.0) -> None:
        with self._lock:
            current = self._zoom
            if kind == GestureKind.SQUINT:
                new_zoom = min(current + self.step, self.max_zoom)
            else:
                new_zoom = max(current - self.step, self.min_zoom)
            self._zoom = round(new_zoom, 2)
        logger.info("缩放 %s: %.2f -> %.2f (强度 %.2f)", kind.value, current, self._zoom, intensity)

    def reset(self) -> None:
        with self._lock:
            self._zoom = self.min_zoom


class BadgeStatus:
    """以徽标文字表示监测状态：激活时为 ON，否则为空"""

    def __init__(self):
        self.text = ""

    @property
    def active(self) -> bool:
        return self.text == "ON"

    def set_active(self, active: bool) -> None:
        self.text = "ON" if active else ""
        logger.debug("徽标: %r", self.text)
