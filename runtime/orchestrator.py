"""会话编排器：监测会话的生命周期、授权检查、状态徽标和手势转发"""

import datetime
import logging
import threading
from concurrent.futures import Future
from typing import Callable, List, Optional

from models.data_models import LogEntry, SessionState
from models.messages import (
    CameraError,
    CameraReleased,
    GestureDetected,
    GetStatus,
    MonitoringStatus,
    PermissionDenied,
    PermissionGranted,
    Ready,
    Response,
    StartCamera,
    StartAcknowledged,
    StartMonitoring,
    StartTimeout,
    StopCamera,
    StopMonitoring,
)
from runtime.context import Context, Reply, TimerHandle
from runtime.host_manager import HostCreation, HostManager, PipelineLock

logger = logging.getLogger(__name__)

PERMISSION_REQUIRED = "Permission required"


class SessionOrchestrator(Context):
    """
    状态机: IDLE -> AWAITING_PERMISSION -> STARTING -> ACTIVE -> STOPPING -> IDLE，
    AWAITING_PERMISSION / STARTING 失败进入 ERROR。

    - 启动等待桥接应答，超时后进入 ERROR；ERROR 状态下可以重新启动
    - 停止不等待下游确认，立即应答并清除状态徽标；
      管线锁在桥接确认摄像头释放之后才归还
    - 只有 ACTIVE 状态下的当前会话手势才会转发给副作用处理器
    """

    name = "orchestrator"
    MAX_LOG_ENTRIES = 200

    def __init__(
        self,
        store,
        host_manager: HostManager,
        action_handler,
        status_surface,
        start_timeout_ms: int = 5000,
        on_permission_required: Optional[Callable[[], None]] = None,
        pipeline_lock: Optional[PipelineLock] = None,
        scheduler=None,
    ):
        super().__init__(scheduler)
        self._store = store
        self._host_manager = host_manager
        self._action_handler = action_handler
        self._status_surface = status_surface
        self._start_timeout_ms = start_timeout_ms
        self._on_permission_required = on_permission_required
        self._pipeline_lock = pipeline_lock or PipelineLock()

        self._state = SessionState.IDLE
        self._session_id = 0
        self._start_waiters: List[Reply] = []
        self._timeout: Optional[TimerHandle] = None

        self._logs: List[dict] = []
        self._log_lock = threading.Lock()

        self.register(StartMonitoring, self._on_start)
        self.register(StopMonitoring, self._on_stop)
        self.register(GetStatus, self._on_get_status)
        self.register(StartAcknowledged, self._on_start_ack)
        self.register(StartTimeout, self._on_start_timeout)
        self.register(GestureDetected, self._on_gesture)
        self.register(MonitoringStatus, self._on_monitoring_status)
        self.register(CameraError, self._on_camera_error)
        self.register(Ready, self._on_ready)
        self.register(CameraReleased, self._on_camera_released)
        self.register(PermissionGranted, self._on_permission_granted)
        self.register(PermissionDenied, self._on_permission_denied)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> int:
        return self._session_id

    # ---- 面向调用方的便捷入口 ----

    def start_monitoring(self) -> Future:
        return self.request(StartMonitoring())

    def stop_monitoring(self) -> Future:
        return self.request(StopMonitoring())

    def get_status(self) -> Future:
        return self.request(GetStatus())

    # ---- 用户可见日志 ----

    def _add_log(self, level: str, message: str) -> None:
        """添加一条用户可见日志。level: info / warning / danger"""
        entry = LogEntry(
            time=datetime.datetime.now().strftime("%H:%M:%S"),
            level=level,
            message=message,
        )
        with self._log_lock:
            self._logs.append(entry.to_dict())
            if len(self._logs) > self.MAX_LOG_ENTRIES:
                self._logs = self._logs[-self.MAX_LOG_ENTRIES:]

    def get_logs(self, since: int = 0):
        """获取日志，since 为起始索引。"""
        with self._log_lock:
            return self._logs[since:], len(self._logs)

    # ---- 启动 ----

    def _on_start(self, msg: StartMonitoring, reply: Reply) -> None:
        if self._state == SessionState.ACTIVE:
            reply.send(Response.ok(active=True))
            return
        if self._state == SessionState.STARTING:
            self._start_waiters.append(reply)
            return

        if not self._store.permission_granted():
            self._state = SessionState.AWAITING_PERMISSION
            self._add_log("warning", "未获得摄像头授权，请先完成授权设置")
            logger.info("摄像头未授权，等待授权")
            if self._on_permission_required is not None:
                self._on_permission_required()
            reply.send(Response.fail(PERMISSION_REQUIRED, active=False))
            return

        self._begin_start(reply)

    def _begin_start(self, reply: Optional[Reply]) -> None:
        if not self._pipeline_lock.acquire(PipelineLock.DETECTION):
            self._add_log("warning", "校准进行中，无法启动监测")
            if reply is not None:
                reply.send(Response.fail("Calibration in progress", active=False))
            self._state = SessionState.IDLE
            return

        self._state = SessionState.STARTING
        self._session_id += 1
        session_id = self._session_id
        if reply is not None:
            self._start_waiters.append(reply)

        try:
            creation = self._host_manager.ensure_created(self)
            config = self._store.threshold_config()
            future = self._host_manager.bridge.request(StartCamera(config=config, session_id=session_id))
        except Exception as e:
            logger.exception("启动监测失败")
            self._fail_start(str(e) or type(e).__name__)
            return

        if creation == HostCreation.CREATED:
            logger.info("已创建检测宿主")
        logger.info(
            "正在启动会话 %d: 眯眼 < %.3f, 睁大 > %.3f, 驻留 %dms, 冷却 %dms",
            session_id, config.squint_threshold, config.wide_eye_threshold,
            config.squint_duration, config.cooldown,
        )

        future.add_done_callback(lambda f: self.post(
            StartAcknowledged(session_id=session_id, response=self._future_response(f))
        ))
        self._timeout = self.call_later(self._start_timeout_ms, StartTimeout(session_id=session_id))

    @staticmethod
    def _future_response(future: Future) -> Response:
        exc = future.exception()
        if exc is not None:
            return Response.fail(str(exc) or type(exc).__name__)
        return future.result()

    def _on_start_ack(self, msg: StartAcknowledged) -> None:
        if msg.session_id != self._session_id or self._state != SessionState.STARTING:
            logger.debug("忽略过期的启动应答: session=%d", msg.session_id)
            return
        self._cancel_timeout()

        if not msg.response.success:
            self._fail_start(msg.response.error or "Camera failed to start")
            return

        self._state = SessionState.ACTIVE
        self._status_surface.set_active(True)
        self._add_log("info", "监测已启动")
        logger.info("会话 %d 已激活", msg.session_id)
        self._resolve_waiters(Response.ok(active=True))

    def _on_start_timeout(self, msg: StartTimeout) -> None:
        if msg.session_id != self._session_id or self._state != SessionState.STARTING:
            return
        logger.error("会话 %d 启动超时 (%dms)", msg.session_id, self._start_timeout_ms)
        self._fail_start("Camera start timed out")

    def _fail_start(self, error: str) -> None:
        self._cancel_timeout()
        self._state = SessionState.ERROR
        self._status_surface.set_active(False)
        self._add_log("danger", f"监测启动失败: {error}")
        self._release_pipeline()
        self._resolve_waiters(Response.fail(error, active=False))

    # ---- 停止 ----

    def _on_stop(self, msg: StopMonitoring, reply: Reply) -> None:
        previous = self._state
        if previous in (SessionState.STARTING, SessionState.ACTIVE):
            self._state = SessionState.STOPPING
            self._release_pipeline()

        self._cancel_timeout()
        self._state = SessionState.IDLE
        self._status_surface.set_active(False)
        self._resolve_waiters(Response.fail("Monitoring stopped", active=False))

        if previous != SessionState.IDLE:
            self._add_log("info", "监测已停止")
            logger.info("会话 %d 已停止 (之前状态 %s)", self._session_id, previous.value)
        reply.send(Response.ok(active=False))

    def _release_pipeline(self) -> None:
        """请求桥接关闭当前会话的摄像头，确认释放后再归还管线锁"""
        session_id = self._session_id
        bridge = self._host_manager.bridge
        if bridge is None:
            self._pipeline_lock.release(PipelineLock.DETECTION)
            return
        future = bridge.request(StopCamera(session_id=session_id))
        future.add_done_callback(lambda f: self.post(CameraReleased(session_id=session_id)))

    def _on_camera_released(self, msg: CameraReleased) -> None:
        if msg.session_id != self._session_id or self._state in (SessionState.STARTING, SessionState.ACTIVE):
            logger.debug("管线已被新会话占用，保留管线锁: session=%d", msg.session_id)
            return
        self._pipeline_lock.release(PipelineLock.DETECTION)
        logger.debug("会话 %d 的摄像头已释放，归还管线锁", msg.session_id)

    # ---- 查询 ----

    def _on_get_status(self, msg: GetStatus, reply: Reply) -> None:
        reply.send(Response.ok(active=self._state == SessionState.ACTIVE, state=self._state.value))

    # ---- 下游事件 ----

    def _on_gesture(self, msg: GestureDetected) -> None:
        if self._state != SessionState.ACTIVE or msg.session_id != self._session_id:
            logger.debug("会话未激活，忽略手势 %s", msg.kind.value)
            return
        self._action_handler.handle(msg.kind, msg.intensity)

    def _on_monitoring_status(self, msg: MonitoringStatus) -> None:
        if msg.session_id != self._session_id:
            return
        if not msg.active and self._state == SessionState.ACTIVE:
            self._state = SessionState.IDLE
            self._status_surface.set_active(False)
            self._release_pipeline()
            self._add_log("warning", "摄像头已停止，监测中断")
            logger.warning("会话 %d 被下游停止", msg.session_id)

    def _on_camera_error(self, msg: CameraError) -> None:
        logger.error("摄像头错误: %s", msg.error)
        self._add_log("danger", f"摄像头错误: {msg.error}")

    def _on_ready(self, msg: Ready) -> None:
        logger.debug("检测宿主已就绪: session=%d", msg.session_id)

    # ---- 授权 ----

    def _on_permission_granted(self, msg: PermissionGranted) -> None:
        if self._state != SessionState.AWAITING_PERMISSION:
            return
        if not self._store.permission_granted():
            logger.warning("收到授权通知，但存储中没有授权记录")
            return
        self._add_log("info", "摄像头授权完成，继续启动监测")
        self._begin_start(None)

    def _on_permission_denied(self, msg: PermissionDenied) -> None:
        if self._state != SessionState.AWAITING_PERMISSION:
            return
        self._state = SessionState.ERROR
        self._status_surface.set_active(False)
        self._add_log("danger", f"摄像头授权失败: {msg.error}")

    # ---- 内部 ----

    def _cancel_timeout(self) -> None:
        if self._timeout is not None:
            self._timeout.cancel()
            self._timeout = None

    def _resolve_waiters(self, response: Response) -> None:
        waiters, self._start_waiters = self._start_waiters, []
        for waiter in waiters:
            waiter.send(response)
