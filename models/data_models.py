"""核心数据模型定义"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Mapping, Optional, Sequence, Tuple

# 单帧人脸关键点：(x, y, z) 序列；None 表示未检测到人脸
Point = Tuple[float, ...]
LandmarkFrame = Optional[Sequence[Point]]


class ConfigError(ValueError):
    """阈值配置非法（例如眯眼阈值不小于睁大阈值）"""


@dataclass(frozen=True)
class EyeGeometry:
    """单只眼睛的关键点角色到 FaceMesh 索引的映射"""
    upper_a: int
    upper_b: int
    lower_a: int
    lower_b: int
    inner_corner: int
    outer_corner: int

    def indices(self) -> Tuple[int, ...]:
        return (
            self.upper_a, self.upper_b,
            self.lower_a, self.lower_b,
            self.inner_corner, self.outer_corner,
        )


@dataclass
class OpennessSample:
    """单帧双眼睁开度"""
    value: float
    timestamp: int
    face_detected: bool = True


@dataclass(frozen=True)
class ThresholdConfig:
    """手势检测阈值配置，时间单位为毫秒"""
    squint_threshold: float = 0.38
    wide_eye_threshold: float = 0.52
    squint_duration: int = 400
    cooldown: int = 1500

    # 设置存储中的键名与字段名一一对应
    FIELDS = ("squint_threshold", "wide_eye_threshold", "squint_duration", "cooldown")

    def validate(self) -> "ThresholdConfig":
        """校验阈值顺序和时长，非法时抛出 ConfigError"""
        for name in ("squint_threshold", "wide_eye_threshold"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
                raise ConfigError(f"{name} 必须是有限数值: {value!r}")
        for name in ("squint_duration", "cooldown"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                raise ConfigError(f"{name} 必须是非负数: {value!r}")
        if self.squint_threshold >= self.wide_eye_threshold:
            raise ConfigError(
                f"眯眼阈值 {self.squint_threshold} 必须小于睁大阈值 {self.wide_eye_threshold}"
            )
        return self

    def with_overrides(self, overrides: Optional[Mapping]) -> "ThresholdConfig":
        """
        应用部分覆盖配置，仅覆盖存在且非 None 的字段。

        Args:
            overrides: 设置字典，可只包含一个阈值

        Returns:
            校验通过的新 ThresholdConfig
        """
        if not overrides:
            return self
        changes = {
            key: overrides[key]
            for key in self.FIELDS
            if key in overrides and overrides[key] is not None
        }
        return replace(self, **changes).validate()

    def to_dict(self) -> dict:
        return {key: getattr(self, key) for key in self.FIELDS}


class DetectorPhase(Enum):
    NEUTRAL = "neutral"
    SQUINT_CANDIDATE = "squint_candidate"
    WIDE_CANDIDATE = "wide_candidate"


@dataclass
class DetectorState:
    """手势检测状态机的当前状态"""
    phase: DetectorPhase = DetectorPhase.NEUTRAL
    candidate_since: Optional[int] = None
    last_emission: int = -(10 ** 12)


class GestureKind(Enum):
    SQUINT = "squint"
    WIDE_EYES = "wide_eyes"


@dataclass(frozen=True)
class GestureEvent:
    """离散手势事件"""
    kind: GestureKind
    intensity: float
    timestamp: int


class CalibrationPhase(Enum):
    """校准阶段，按定义顺序依次执行"""
    NORMAL = "normal"
    SQUINT = "squint"
    WIDE = "wide"


@dataclass
class CalibrationResult:
    """三阶段校准结果"""
    normal_avg: float
    squint_avg: float
    wide_avg: float
    squint_threshold: float
    wide_eye_threshold: float

    def to_settings(self) -> dict:
        return {
            "squint_threshold": self.squint_threshold,
            "wide_eye_threshold": self.wide_eye_threshold,
        }


class SessionState(Enum):
    IDLE = "idle"
    AWAITING_PERMISSION = "awaiting_permission"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    ERROR = "error"


class CameraErrorKind(Enum):
    PERMISSION_DENIED = "permission_denied"
    NO_DEVICE = "no_device"
    DEVICE_BUSY = "device_busy"


_CAMERA_ERROR_MESSAGES = {
    CameraErrorKind.PERMISSION_DENIED: "Camera access denied. Please allow camera access in system settings.",
    CameraErrorKind.NO_DEVICE: "No camera found.",
    CameraErrorKind.DEVICE_BUSY: "Camera is in use by another application.",
}


class CameraAccessError(Exception):
    """摄像头打开失败，kind 区分无权限 / 无设备 / 设备占用"""

    def __init__(self, kind: CameraErrorKind, message: Optional[str] = None):
        super().__init__(message or _CAMERA_ERROR_MESSAGES[kind])
        self.kind = kind


@dataclass
class LogEntry:
    """面向用户的事件日志条目"""
    time: str
    level: str
    message: str

    def to_dict(self) -> dict:
        return {"time": self.time, "level": self.level, "message": self.message}
