"""眼睛睁开度计算模块，将一帧人脸关键点转换为双眼睁开度（EAR）"""

import math
from typing import Optional

from models.data_models import EyeGeometry, LandmarkFrame, OpennessSample

# FaceMesh 关键点索引
LEFT_EYE = EyeGeometry(
    upper_a=159, upper_b=145,
    lower_a=23, lower_b=110,
    inner_corner=33, outer_corner=133,
)
RIGHT_EYE = EyeGeometry(
    upper_a=386, upper_b=374,
    lower_a=253, lower_b=339,
    inner_corner=362, outer_corner=263,
)

# 未检测到人脸时的哨兵值，高于任何合理的睁大阈值
NO_FACE_OPENNESS = 1.0


def _point(landmarks, index: int):
    """取出关键点，缺失或格式错误时返回 None"""
    if index < 0 or index >= len(landmarks):
        return None
    point = landmarks[index]
    try:
        if point is None or len(point) < 2:
            return None
    except TypeError:
        return None
    return point


def _distance(a, b) -> float:
    """两点欧氏距离，两个点都带 z 坐标时按 3D 计算"""
    if len(a) >= 3 and len(b) >= 3:
        return math.dist(a[:3], b[:3])
    return math.dist(a[:2], b[:2])


def calculate_eye_openness(eye: EyeGeometry, landmarks: LandmarkFrame) -> Optional[float]:
    """
    计算单只眼睛的睁开度。

    公式: EAR = (|upper_a-lower_a| + |upper_b-lower_b|) / 2 / |inner-outer|

    Args:
        eye: 眼睛关键点索引
        landmarks: 整张脸的关键点序列

    Returns:
        睁开度；关键点缺失或眼角距离为零时返回 None
    """
    if not landmarks:
        return None

    points = [_point(landmarks, i) for i in eye.indices()]
    if any(p is None for p in points):
        return None
    upper_a, upper_b, lower_a, lower_b, inner, outer = points

    try:
        vertical = (_distance(upper_a, lower_a) + _distance(upper_b, lower_b)) / 2.0
        horizontal = _distance(inner, outer)
    except (TypeError, ValueError):
        return None

    if horizontal == 0.0 or not math.isfinite(horizontal) or not math.isfinite(vertical):
        return None

    return vertical / horizontal


def calculate_openness(landmarks: LandmarkFrame,
                       left: EyeGeometry = LEFT_EYE,
                       right: EyeGeometry = RIGHT_EYE) -> float:
    """双眼睁开度的算术平均；任一眼无法计算时返回 NO_FACE_OPENNESS"""
    left_value = calculate_eye_openness(left, landmarks)
    right_value = calculate_eye_openness(right, landmarks)
    if left_value is None or right_value is None:
        return NO_FACE_OPENNESS
    return (left_value + right_value) / 2.0


class EyeAnalyzer:
    """把关键点帧转换为带时间戳的睁开度样本，无状态"""

    def __init__(self, left: EyeGeometry = LEFT_EYE, right: EyeGeometry = RIGHT_EYE):
        self.left = left
        self.right = right

    def measure(self, landmarks: LandmarkFrame, timestamp: int) -> OpennessSample:
        """
        计算一帧的睁开度样本。

        Args:
            landmarks: 关键点序列，None 表示未检测到人脸
            timestamp: 毫秒时间戳

        Returns:
            OpennessSample；走哨兵分支时 face_detected 为 False
        """
        left_value = calculate_eye_openness(self.left, landmarks)
        right_value = calculate_eye_openness(self.right, landmarks)
        if left_value is None or right_value is None:
            return OpennessSample(value=NO_FACE_OPENNESS, timestamp=timestamp, face_detected=False)
        return OpennessSample(value=(left_value + right_value) / 2.0, timestamp=timestamp)
