"""消息定义与外部载荷解析单元测试"""

import numpy as np
import pytest

from models.data_models import GestureKind, ThresholdConfig
from models.messages import (
    CameraError,
    Frame,
    Gesture,
    GetStatus,
    Init,
    MessageError,
    MonitoringStatus,
    OpennessUpdate,
    PermissionDenied,
    PermissionGranted,
    Ready,
    Response,
    StartMonitoring,
    StopCamera,
    StopMonitoring,
    message_from_dict,
)


class TestResponse:

    def test_ok_to_dict(self):
        assert Response.ok(active=True).to_dict() == {"success": True, "active": True}

    def test_fail_to_dict(self):
        payload = Response.fail("boom", active=False).to_dict()
        assert payload == {"success": False, "error": "boom", "active": False}


class TestValidation:

    def test_init_rejects_invalid_config(self):
        with pytest.raises(MessageError):
            Init(config=ThresholdConfig(squint_threshold=0.6, wide_eye_threshold=0.5))

    def test_init_rejects_wrong_config_type(self):
        with pytest.raises(MessageError):
            Init(config={"squint_threshold": 0.3})

    @pytest.mark.parametrize("image", [None, np.zeros(5), np.zeros((1, 1, 1, 1))])
    def test_frame_rejects_bad_image(self, image):
        with pytest.raises(MessageError):
            Frame(image=image)

    def test_frame_accepts_gray_and_color(self):
        Frame(image=np.zeros((4, 4)))
        Frame(image=np.zeros((4, 4, 3)))

    def test_gesture_rejects_unknown_kind(self):
        with pytest.raises(MessageError):
            Gesture(kind="blink")

    @pytest.mark.parametrize("value", [float("nan"), "0.4", True])
    def test_openness_rejects_non_number(self, value):
        with pytest.raises(MessageError):
            OpennessUpdate(value=value)

    @pytest.mark.parametrize("session_id", [-1, 1.5, True])
    def test_session_id_must_be_non_negative_int(self, session_id):
        with pytest.raises(MessageError):
            StopCamera(session_id=session_id)

    def test_ready_success_flag(self):
        assert Ready(session_id=1).success
        assert not Ready(session_id=1, error="init failed").success

    def test_ready_rejects_empty_error(self):
        with pytest.raises(MessageError):
            Ready(error="")

    def test_monitoring_status_requires_bool(self):
        with pytest.raises(MessageError):
            MonitoringStatus(active="yes")

    def test_camera_error_requires_text(self):
        with pytest.raises(MessageError):
            CameraError(error="")

    def test_messages_are_immutable(self):
        msg = Gesture(kind=GestureKind.SQUINT, intensity=0.7)
        with pytest.raises(AttributeError):
            msg.intensity = 0.1


class TestMessageFromDict:

    @pytest.mark.parametrize("type_name, cls", [
        ("START_MONITORING", StartMonitoring),
        ("STOP_MONITORING", StopMonitoring),
        ("GET_STATUS", GetStatus),
        ("PERMISSION_GRANTED", PermissionGranted),
    ])
    def test_known_types(self, type_name, cls):
        assert isinstance(message_from_dict({"type": type_name}), cls)

    def test_permission_denied_with_error(self):
        msg = message_from_dict({"type": "PERMISSION_DENIED", "error": "blocked"})
        assert msg == PermissionDenied(error="blocked")

    @pytest.mark.parametrize("payload", [None, [], "START_MONITORING", {}, {"type": "BOGUS"}])
    def test_rejects_malformed(self, payload):
        with pytest.raises(MessageError):
            message_from_dict(payload)

    def test_rejects_internal_types(self):
        # 宿主内部消息不能从外部注入
        with pytest.raises(MessageError):
            message_from_dict({"type": "GESTURE", "kind": "squint"})

    def test_rejects_unexpected_fields(self):
        with pytest.raises(MessageError):
            message_from_dict({"type": "START_MONITORING", "force": True})
