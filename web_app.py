"""Flask Web 前端 - 监测开关、授权设置、阈值设置和校准向导"""

import logging
from concurrent.futures import TimeoutError as FutureTimeout

from flask import Flask, jsonify, request

from capture.permission import request_camera_permission
from models.data_models import CameraAccessError, ConfigError
from models.messages import (
    CancelCalibration,
    CapturePhase,
    FinishCalibration,
    MessageError,
    PermissionDenied,
    PermissionGranted,
    StartCalibration,
    message_from_dict,
)

logger = logging.getLogger(__name__)

# 等待上下文应答的默认超时（秒）
_REPLY_TIMEOUT = 10.0


def _wait(future, timeout: float = _REPLY_TIMEOUT):
    """等待上下文应答，超时返回 (None, 504 响应)"""
    try:
        return future.result(timeout=timeout), None
    except FutureTimeout:
        return None, (jsonify({"success": False, "error": "Timed out waiting for response"}), 504)


def _respond(response, fail_status: int = 409):
    status = 200 if response.success else fail_status
    return jsonify(response.to_dict()), status


def create_app(orchestrator, store, wizard=None, camera_factory=None, reply_timeout: float = _REPLY_TIMEOUT):
    """
    创建 Flask 应用。

    Args:
        orchestrator: SessionOrchestrator
        store: SettingsStore
        wizard: CalibrationWizard，为 None 时校准接口返回 503
        camera_factory: 授权流程使用的摄像头工厂
        reply_timeout: 等待上下文应答的秒数
    """
    app = Flask(__name__)

    # ---- 监测 ----

    @app.route("/api/start", methods=["POST"])
    def api_start():
        response, error = _wait(orchestrator.start_monitoring(), reply_timeout)
        if error:
            return error
        return _respond(response)

    @app.route("/api/stop", methods=["POST"])
    def api_stop():
        response, error = _wait(orchestrator.stop_monitoring(), reply_timeout)
        if error:
            return error
        return _respond(response)

    @app.route("/api/status")
    def api_status():
        response, error = _wait(orchestrator.get_status(), reply_timeout)
        if error:
            return error
        return _respond(response)

    @app.route("/api/message", methods=["POST"])
    def api_message():
        """通用消息入口，载荷形如 {"type": "START_MONITORING"}"""
        try:
            message = message_from_dict(request.get_json(silent=True))
        except MessageError as e:
            return jsonify({"success": False, "error": str(e)}), 400
        if isinstance(message, (PermissionGranted, PermissionDenied)):
            orchestrator.post(message)
            return jsonify({"success": True})
        response, error = _wait(orchestrator.request(message), reply_timeout)
        if error:
            return error
        return _respond(response)

    # ---- 设置 ----

    @app.route("/api/config", methods=["GET"])
    def api_get_config():
        config = store.threshold_config()
        return jsonify({"success": True, **config.to_dict()})

    @app.route("/api/config", methods=["POST"])
    def api_config():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"success": False, "error": "JSON object required"}), 400
        try:
            config = store.update_thresholds(data)
        except ConfigError as e:
            return jsonify({"success": False, "error": str(e)}), 400
        # 正在运行的会话不受影响，下一次启动时生效
        return jsonify({"success": True, "message": "配置已保存，下次启动时生效", **config.to_dict()})

    # ---- 授权 ----

    @app.route("/api/permission", methods=["GET"])
    def api_permission_status():
        return jsonify({"success": True, "granted": store.permission_granted()})

    @app.route("/api/permission", methods=["POST"])
    def api_permission():
        if camera_factory is None:
            return jsonify({"success": False, "error": "Camera unavailable"}), 503
        try:
            request_camera_permission(store, camera_factory)
        except CameraAccessError as e:
            orchestrator.post(PermissionDenied(error=str(e)))
            return jsonify({"success": False, "error": str(e), "kind": e.kind.value}), 403
        orchestrator.post(PermissionGranted())
        return jsonify({"success": True, "granted": True})

    # ---- 校准 ----

    def _wizard_request(message, timeout):
        if wizard is None:
            return jsonify({"success": False, "error": "Calibration unavailable"}), 503
        response, error = _wait(wizard.request(message), timeout)
        if error:
            return error
        return _respond(response)

    @app.route("/api/calibration/start", methods=["POST"])
    def api_calibration_start():
        return _wizard_request(StartCalibration(), reply_timeout)

    @app.route("/api/calibration/finish", methods=["POST"])
    def api_calibration_finish():
        return _wizard_request(FinishCalibration(), reply_timeout)

    @app.route("/api/calibration/cancel", methods=["POST"])
    def api_calibration_cancel():
        return _wizard_request(CancelCalibration(), reply_timeout)

    @app.route("/api/calibration/<phase>", methods=["POST"])
    def api_calibration_phase(phase):
        return _wizard_request(CapturePhase(phase=phase), reply_timeout)

    # ---- 日志 ----

    @app.route("/api/logs")
    def api_logs():
        since = request.args.get("since", 0, type=int)
        logs, total = orchestrator.get_logs(since)
        return jsonify({"logs": logs, "total": total})

    return app
