"""摄像头采集模块，基于 OpenCV VideoCapture"""

import logging
from typing import Optional

import cv2
import numpy as np

from models.data_models import CameraAccessError, CameraErrorKind

logger = logging.getLogger(__name__)


def classify_camera_error(error: Exception) -> CameraErrorKind:
    """根据底层异常文本归类摄像头错误"""
    if isinstance(error, PermissionError):
        return CameraErrorKind.PERMISSION_DENIED
    text = str(error).lower()
    if "permission" in text or "not authorized" in text or "denied" in text:
        return CameraErrorKind.PERMISSION_DENIED
    if "busy" in text or "in use" in text:
        return CameraErrorKind.DEVICE_BUSY
    return CameraErrorKind.NO_DEVICE


class CameraSource:
    """低分辨率、低帧率的实时视频源"""

    def __init__(self, index: int = 0, width: int = 320, height: int = 240, fps: int = 10):
        self.index = index
        self.width = width
        self.height = height
        self.fps = fps
        self._cap = None

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def open(self) -> None:
        """
        打开摄像头并读取一帧确认可用。

        Raises:
            CameraAccessError: 无权限、无设备或设备被占用
        """
        if self.is_open:
            return
        try:
            cap = cv2.VideoCapture(self.index)
        except (cv2.error, PermissionError) as e:
            raise CameraAccessError(classify_camera_error(e)) from e

        if not cap.isOpened():
            cap.release()
            raise CameraAccessError(CameraErrorKind.NO_DEVICE)

        try:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            cap.set(cv2.CAP_PROP_FPS, self.fps)
            ret, _ = cap.read()
        except cv2.error as e:
            cap.release()
            raise CameraAccessError(classify_camera_error(e)) from e
        if not ret:
            cap.release()
            raise CameraAccessError(CameraErrorKind.DEVICE_BUSY)

        self._cap = cap
        logger.info("摄像头已打开: index=%d %dx%d@%dfps", self.index, self.width, self.height, self.fps)

    def read(self) -> Optional[np.ndarray]:
        """读取一帧，失败时返回 None"""
        if not self.is_open:
            return None
        ret, frame = self._cap.read()
        if not ret:
            return None
        return frame

    def release(self) -> None:
        """释放摄像头资源"""
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info("摄像头已释放")
