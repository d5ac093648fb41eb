"""上下文之间传递的消息定义。

消息分为两类：

- ``Notification``：发出即忘，不等待应答；
- ``Request``：发送方拿到一个 Future，接收方稍后以 ``Response`` 应答。

所有消息都是不可变数据类，在 ``__post_init__`` 中校验字段，
非法载荷在边界处抛出 ``MessageError``，不会进入状态机。
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type

from models.data_models import (
    CameraErrorKind,
    ConfigError,
    GestureKind,
    ThresholdConfig,
)


class MessageError(ValueError):
    """消息载荷不符合协议"""


def _require_number(name: str, value, minimum: Optional[float] = None) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise MessageError(f"{name} 必须是有限数值: {value!r}")
    if minimum is not None and value < minimum:
        raise MessageError(f"{name} 不能小于 {minimum}: {value!r}")


def _require_session(value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MessageError(f"session_id 必须是非负整数: {value!r}")


@dataclass(frozen=True)
class Message:
    """所有消息的基类，``TYPE`` 为协议中的标签"""
    TYPE = ""


@dataclass(frozen=True)
class Notification(Message):
    pass


@dataclass(frozen=True)
class Request(Message):
    pass


@dataclass(frozen=True)
class Response:
    """请求的应答"""
    success: bool
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data) -> "Response":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, **data) -> "Response":
        return cls(success=False, error=error, data=data)

    def to_dict(self) -> dict:
        payload = {"success": self.success}
        if self.error is not None:
            payload["error"] = self.error
        payload.update(self.data)
        return payload


# ---- 检测宿主（sandbox）词汇 ----

@dataclass(frozen=True)
class Init(Notification):
    """初始化检测宿主：下发阈值配置，选择检测或校准模式"""
    TYPE = "INIT"
    config: ThresholdConfig = field(default_factory=ThresholdConfig)
    calibration: bool = False
    session_id: int = 0

    def __post_init__(self):
        if not isinstance(self.config, ThresholdConfig):
            raise MessageError(f"config 类型错误: {type(self.config).__name__}")
        try:
            self.config.validate()
        except ConfigError as e:
            raise MessageError(str(e)) from e
        _require_session(self.session_id)


@dataclass(frozen=True)
class Frame(Notification):
    """一帧待处理图像"""
    TYPE = "FRAME"
    image: Any = None
    session_id: int = 0

    def __post_init__(self):
        shape = getattr(self.image, "shape", None)
        if shape is None or len(shape) not in (2, 3):
            raise MessageError("image 必须是二维或三维图像数组")
        _require_session(self.session_id)


@dataclass(frozen=True)
class Ready(Notification):
    """检测宿主初始化完成；error 不为空表示初始化失败"""
    TYPE = "READY"
    session_id: int = 0
    error: Optional[str] = None

    def __post_init__(self):
        _require_session(self.session_id)
        if self.error is not None and (not isinstance(self.error, str) or not self.error):
            raise MessageError(f"error 必须是非空字符串: {self.error!r}")

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Gesture(Notification):
    """检测宿主发出的手势事件"""
    TYPE = "GESTURE"
    kind: GestureKind = GestureKind.SQUINT
    intensity: float = 0.0
    timestamp: int = 0
    session_id: int = 0

    def __post_init__(self):
        if not isinstance(self.kind, GestureKind):
            raise MessageError(f"未知手势类型: {self.kind!r}")
        _require_number("intensity", self.intensity)
        _require_number("timestamp", self.timestamp, minimum=0)
        _require_session(self.session_id)


@dataclass(frozen=True)
class OpennessUpdate(Notification):
    """校准模式下的原始睁开度数据流"""
    TYPE = "EAR_UPDATE"
    value: float = 0.0
    session_id: int = 0

    def __post_init__(self):
        _require_number("value", self.value)
        _require_session(self.session_id)


@dataclass(frozen=True)
class Stop(Notification):
    """停止检测，丢弃检测器状态"""
    TYPE = "STOP"
    session_id: int = 0

    def __post_init__(self):
        _require_session(self.session_id)


# ---- 桥接（offscreen）命令 ----

@dataclass(frozen=True)
class StartCamera(Request):
    TYPE = "START_CAMERA"
    config: ThresholdConfig = field(default_factory=ThresholdConfig)
    calibration: bool = False
    session_id: int = 0

    def __post_init__(self):
        if not isinstance(self.config, ThresholdConfig):
            raise MessageError(f"config 类型错误: {type(self.config).__name__}")
        _require_session(self.session_id)


@dataclass(frozen=True)
class StopCamera(Request):
    """关闭摄像头；应答在摄像头释放之后发出"""
    TYPE = "STOP_CAMERA"
    session_id: int = 0

    def __post_init__(self):
        _require_session(self.session_id)


@dataclass(frozen=True)
class FrameTick(Notification):
    """桥接内部的帧采集定时器"""
    TYPE = "FRAME_TICK"
    session_id: int = 0


# ---- 编排器（background）词汇 ----

@dataclass(frozen=True)
class StartMonitoring(Request):
    TYPE = "START_MONITORING"


@dataclass(frozen=True)
class StopMonitoring(Request):
    TYPE = "STOP_MONITORING"


@dataclass(frozen=True)
class GetStatus(Request):
    TYPE = "GET_STATUS"


@dataclass(frozen=True)
class GestureDetected(Notification):
    """桥接转发给编排器的手势事件"""
    TYPE = "GESTURE_DETECTED"
    kind: GestureKind = GestureKind.SQUINT
    intensity: float = 0.0
    session_id: int = 0

    def __post_init__(self):
        if not isinstance(self.kind, GestureKind):
            raise MessageError(f"未知手势类型: {self.kind!r}")
        _require_number("intensity", self.intensity)
        _require_session(self.session_id)


@dataclass(frozen=True)
class MonitoringStatus(Notification):
    TYPE = "MONITORING_STATUS"
    active: bool = False
    session_id: int = 0
    error: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.active, bool):
            raise MessageError(f"active 必须是布尔值: {self.active!r}")
        _require_session(self.session_id)


@dataclass(frozen=True)
class CameraError(Notification):
    TYPE = "CAMERA_ERROR"
    error: str = ""
    kind: Optional[CameraErrorKind] = None
    session_id: int = 0

    def __post_init__(self):
        if not isinstance(self.error, str) or not self.error:
            raise MessageError("error 不能为空")
        _require_session(self.session_id)


@dataclass(frozen=True)
class PermissionGranted(Notification):
    TYPE = "PERMISSION_GRANTED"


@dataclass(frozen=True)
class PermissionDenied(Notification):
    TYPE = "PERMISSION_DENIED"
    error: str = "Camera permission denied"


@dataclass(frozen=True)
class StartAcknowledged(Notification):
    """桥接对 StartCamera 的应答，回投到编排器自己的收件箱"""
    TYPE = "START_ACK"
    session_id: int = 0
    response: Response = field(default_factory=lambda: Response(success=False))


@dataclass(frozen=True)
class StartTimeout(Notification):
    """启动应答超时"""
    TYPE = "START_TIMEOUT"
    session_id: int = 0


@dataclass(frozen=True)
class CameraReleased(Notification):
    """桥接确认摄像头已释放，回投到管线所有者自己的收件箱"""
    TYPE = "CAMERA_RELEASED"
    session_id: int = 0


# ---- 校准向导词汇 ----

@dataclass(frozen=True)
class StartCalibration(Request):
    TYPE = "START_CALIBRATION"


@dataclass(frozen=True)
class CapturePhase(Request):
    TYPE = "CAPTURE_PHASE"
    phase: str = "normal"

    def __post_init__(self):
        if not isinstance(self.phase, str) or not self.phase:
            raise MessageError(f"phase 必须是非空字符串: {self.phase!r}")


@dataclass(frozen=True)
class SampleTick(Notification):
    TYPE = "SAMPLE_TICK"
    token: int = 0


@dataclass(frozen=True)
class PhaseDeadline(Notification):
    TYPE = "PHASE_DEADLINE"
    token: int = 0


@dataclass(frozen=True)
class FinishCalibration(Request):
    TYPE = "FINISH_CALIBRATION"


@dataclass(frozen=True)
class CancelCalibration(Request):
    TYPE = "CANCEL_CALIBRATION"


_EXTERNAL_MESSAGES: Dict[str, Type[Message]] = {
    cls.TYPE: cls
    for cls in (
        StartMonitoring,
        StopMonitoring,
        GetStatus,
        PermissionGranted,
        PermissionDenied,
    )
}


def message_from_dict(payload) -> Message:
    """
    将外部传入的无类型载荷解析为消息对象。

    仅接受宿主界面可以发出的消息类型，其余类型一律拒绝。

    Args:
        payload: 形如 {"type": "START_MONITORING", ...} 的字典

    Returns:
        对应的 Message 实例

    Raises:
        MessageError: 载荷不是字典、缺少 type 或类型未知
    """
    if not isinstance(payload, dict):
        raise MessageError("消息载荷必须是字典")
    msg_type = payload.get("type")
    cls = _EXTERNAL_MESSAGES.get(msg_type)
    if cls is None:
        raise MessageError(f"未知消息类型: {msg_type!r}")
    kwargs = {k: v for k, v in payload.items() if k != "type"}
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise MessageError(f"消息字段错误: {e}") from e
