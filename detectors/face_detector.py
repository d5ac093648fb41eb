"""人脸关键点提取模块，基于 MediaPipe FaceMesh"""

import logging
from typing import List, Optional, Tuple

import cv2
import mediapipe as mp
import numpy as np

logger = logging.getLogger(__name__)

# FaceMesh 至少输出的关键点数量
MIN_LANDMARKS = 468


class FaceDetector:
    """使用 MediaPipe FaceMesh 提取单张人脸的 3D 关键点"""

    def __init__(
        self,
        max_num_faces: int = 1,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ):
        """初始化 MediaPipe FaceMesh，固定为单人脸 + 精细化关键点"""
        self._face_mesh = mp.solutions.face_mesh.FaceMesh(
            max_num_faces=max_num_faces,
            min_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
            refine_landmarks=True,
        )

    def detect(self, frame: np.ndarray) -> Optional[List[Tuple[float, float, float]]]:
        """
        检测单帧图像中的人脸关键点。

        Args:
            frame: BGR 格式的 OpenCV 图像帧

        Returns:
            归一化坐标的 (x, y, z) 列表，索引与 FaceMesh 一致；未检测到人脸时返回 None
        """
        # BGR -> RGB
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        rgb_frame.flags.writeable = False

        results = self._face_mesh.process(rgb_frame)

        if not results.multi_face_landmarks:
            return None

        face = results.multi_face_landmarks[0]
        landmarks = [(lm.x, lm.y, lm.z) for lm in face.landmark]

        if len(landmarks) < MIN_LANDMARKS:
            logger.debug("关键点数量不足: %d", len(landmarks))
            return None

        return landmarks

    def close(self):
        """释放 MediaPipe 资源"""
        self._face_mesh.close()
