"""眯眼缩放系统入口文件"""

import argparse
import json
import logging

from actions.zoom import BadgeStatus, ZoomController
from calibration.wizard import CalibrationWizard
from runtime.host_manager import HostManager, PipelineLock
from runtime.orchestrator import SessionOrchestrator
from storage.settings_store import SettingsStore
from web_app import create_app

logger = logging.getLogger(__name__)

# 默认配置
_DEFAULTS = {
    "camera_index": 0,
    "frame_width": 320,
    "frame_height": 240,
    "fps": 10,
    "frame_interval_ms": 100,
    "start_timeout_ms": 5000,
    "settings_path": "settings.json",
    "host": "0.0.0.0",
    "port": 5000,
}


def _load_config(config_path):
    """从 JSON 配置文件加载运行参数，缺失字段使用默认值。"""
    config = dict(_DEFAULTS)

    if config_path is None:
        return config

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning("配置文件不存在 %s，使用默认配置", config_path)
        return config
    except json.JSONDecodeError:
        logger.warning("配置文件格式错误 %s，使用默认配置", config_path)
        return config

    if not isinstance(data, dict):
        logger.warning("配置文件内容不是对象 %s，使用默认配置", config_path)
        return config

    # 用配置文件中的值覆盖默认值
    for key in _DEFAULTS:
        if key in data and data[key] is not None:
            config[key] = data[key]

    return config


def _create_face_detector():
    """延迟导入 MediaPipe，只在检测宿主初始化时加载。"""
    from detectors.face_detector import FaceDetector
    return FaceDetector()


class SquintZoomSystem:
    """眯眼缩放系统主程序，组装存储、检测管线、编排器和校准向导。"""

    def __init__(self, config_path=None):
        self.config = _load_config(config_path)
        self.store = SettingsStore(self.config["settings_path"])
        self.pipeline_lock = PipelineLock()
        self.zoom = ZoomController()
        self.badge = BadgeStatus()

        # 检测和校准各自持有一条 桥接 + 检测宿主 管线
        self.detection_hosts = HostManager(
            self._create_camera,
            _create_face_detector,
            frame_interval_ms=self.config["frame_interval_ms"],
        )
        self.calibration_hosts = HostManager(
            self._create_camera,
            _create_face_detector,
            frame_interval_ms=self.config["frame_interval_ms"],
        )

        self.orchestrator = SessionOrchestrator(
            self.store,
            self.detection_hosts,
            self.zoom,
            self.badge,
            start_timeout_ms=self.config["start_timeout_ms"],
            on_permission_required=self._on_permission_required,
            pipeline_lock=self.pipeline_lock,
        )
        self.wizard = CalibrationWizard(
            self.store,
            self.calibration_hosts,
            pipeline_lock=self.pipeline_lock,
        )

    def _create_camera(self):
        from capture.camera import CameraSource
        return CameraSource(
            index=self.config["camera_index"],
            width=self.config["frame_width"],
            height=self.config["frame_height"],
            fps=self.config["fps"],
        )

    @staticmethod
    def _on_permission_required():
        logger.warning("需要摄像头授权，请在设置页面完成授权: POST /api/permission")

    def create_app(self):
        return create_app(
            self.orchestrator,
            self.store,
            wizard=self.wizard,
            camera_factory=self._create_camera,
        )

    def run(self, host=None, port=None):
        """启动上下文消息循环和 Web 服务。"""
        self.orchestrator.start()
        self.wizard.start()
        app = self.create_app()
        host = host or self.config["host"]
        port = port or self.config["port"]
        logger.info("服务启动: http://%s:%s", host, port)
        try:
            app.run(host=host, port=port, threaded=True)
        finally:
            self.stop()

    def stop(self):
        """停止监测、关闭所有上下文和检测宿主。"""
        self.orchestrator.close()
        self.wizard.close()
        self.detection_hosts.close()
        self.calibration_hosts.close()


def main():
    parser = argparse.ArgumentParser(description="眯眼缩放系统")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON 配置文件路径",
    )
    parser.add_argument("--host", type=str, default=None, help="监听地址")
    parser.add_argument("--port", type=int, default=None, help="监听端口")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="日志级别",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    system = SquintZoomSystem(config_path=args.config)
    system.run(host=args.host, port=args.port)


if __name__ == "__main__":
    main()
