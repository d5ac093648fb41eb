"""桥接上下文：持有摄像头和帧采集定时器，在检测宿主与编排器之间翻译消息"""

import logging
from typing import Callable, List, Optional

from models.data_models import CameraAccessError
from models.messages import (
    CameraError,
    Frame,
    FrameTick,
    Gesture,
    GestureDetected,
    Init,
    MonitoringStatus,
    OpennessUpdate,
    Ready,
    Response,
    StartCamera,
    Stop,
    StopCamera,
)
from runtime.context import Context, Reply, TimerHandle
from runtime.detector_host import DetectorHost

logger = logging.getLogger(__name__)


class ContextBridge(Context):
    """
    命令方向：StartCamera / StopCamera -> 打开摄像头、Init / Stop 检测宿主。
    事件方向：宿主的 Ready / Gesture / OpennessUpdate -> 所有者的 Ready / GestureDetected / OpennessUpdate。

    StartCamera 在宿主对当前会话回复 Ready 之后才应答，宿主初始化失败时关闭摄像头并应答失败；
    StopCamera 在摄像头释放之后应答。
    只有在激活状态且宿主已对当前会话回复 Ready 后才采集帧；
    过期会话或停止之后到达的宿主消息一律丢弃。
    """

    name = "bridge"

    def __init__(self, host: DetectorHost, camera_factory: Callable,
                 frame_interval_ms: int = 100, scheduler=None):
        super().__init__(scheduler)
        self._host = host
        self._host.connect(self)
        self._camera_factory = camera_factory
        self._frame_interval_ms = frame_interval_ms
        self._owner: Optional[Context] = None
        self._camera = None
        self._active = False
        self._host_ready = False
        self._session_id: Optional[int] = None
        self._timer: Optional[TimerHandle] = None
        self._start_replies: List[Reply] = []

        self.register(StartCamera, self._on_start_camera)
        self.register(StopCamera, self._on_stop_camera)
        self.register(FrameTick, self._on_frame_tick)
        self.register(Ready, self._on_ready)
        self.register(Gesture, self._on_gesture)
        self.register(OpennessUpdate, self._on_openness)

    def connect(self, owner: Context) -> None:
        self._owner = owner

    @property
    def host(self) -> DetectorHost:
        return self._host

    @property
    def active(self) -> bool:
        return self._active

    @property
    def host_ready(self) -> bool:
        return self._host_ready

    def _notify(self, message) -> None:
        if self._owner is not None:
            self._owner.post(message)

    # ---- 命令 ----

    def _on_start_camera(self, msg: StartCamera, reply: Reply) -> None:
        if self._active:
            if msg.session_id == self._session_id:
                if self._host_ready:
                    logger.info("摄像头已处于激活状态")
                    reply.send(Response.ok(active=True))
                else:
                    self._start_replies.append(reply)
                return
            logger.warning("收到新会话 %d 的启动命令，先停止会话 %d", msg.session_id, self._session_id)
            self._shutdown()

        init = Init(config=msg.config, calibration=msg.calibration, session_id=msg.session_id)

        camera = self._camera_factory()
        try:
            camera.open()
        except CameraAccessError as e:
            camera.release()
            logger.error("摄像头打开失败: %s", e)
            self._notify(CameraError(error=str(e), kind=e.kind, session_id=msg.session_id))
            self._notify(MonitoringStatus(active=False, session_id=msg.session_id, error=str(e)))
            reply.send(Response.fail(str(e), kind=e.kind.value))
            return

        self._camera = camera
        self._active = True
        self._host_ready = False
        self._session_id = msg.session_id
        self._start_replies.append(reply)

        # 宿主回复 Ready 之后才应答启动命令
        self._host.post(init)
        self._schedule_tick()
        logger.info("会话 %d 摄像头已打开 (%s模式)，等待检测宿主就绪",
                    msg.session_id, "校准" if msg.calibration else "检测")

    def _on_stop_camera(self, msg: StopCamera, reply: Reply) -> None:
        if not self._active:
            logger.debug("摄像头未激活，忽略停止命令")
        elif msg.session_id != self._session_id:
            logger.debug("忽略过期会话的停止命令: %d", msg.session_id)
        else:
            self._shutdown()
        reply.send(Response.ok(active=self._active))

    def _answer_start(self, response: Response) -> None:
        replies, self._start_replies = self._start_replies, []
        for reply in replies:
            reply.send(response)

    def _shutdown(self, error: Optional[str] = None) -> None:
        session_id = self._session_id
        self._active = False
        self._host_ready = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._camera is not None:
            self._camera.release()
            self._camera = None
        self._host.post(Stop(session_id=session_id))
        self._answer_start(Response.fail(error or "Camera stopped", active=False))
        self._notify(MonitoringStatus(active=False, session_id=session_id, error=error))
        logger.info("会话 %d 已停止", session_id)

    # ---- 帧采集 ----

    def _schedule_tick(self) -> None:
        self._timer = self.call_later(self._frame_interval_ms, FrameTick(session_id=self._session_id))

    def _on_frame_tick(self, msg: FrameTick) -> None:
        if not self._active or msg.session_id != self._session_id:
            return
        if self._host_ready:
            frame = self._camera.read()
            if frame is not None:
                self._host.post(Frame(image=frame, session_id=self._session_id))
        self._schedule_tick()

    # ---- 宿主事件 ----

    def _is_current(self, session_id: int) -> bool:
        return self._active and session_id == self._session_id

    def _on_ready(self, msg: Ready) -> None:
        if not self._is_current(msg.session_id):
            logger.debug("丢弃过期的 Ready: %d", msg.session_id)
            return
        if not msg.success:
            logger.error("检测宿主初始化失败 (session=%d): %s", msg.session_id, msg.error)
            self._notify(CameraError(error=msg.error, session_id=msg.session_id))
            self._shutdown(error=msg.error)
            return
        self._host_ready = True
        logger.info("检测宿主已就绪 (session=%d)", msg.session_id)
        self._notify(Ready(session_id=msg.session_id))
        self._notify(MonitoringStatus(active=True, session_id=msg.session_id))
        self._answer_start(Response.ok(active=True))

    def _on_gesture(self, msg: Gesture) -> None:
        if not self._is_current(msg.session_id):
            logger.debug("丢弃过期的手势事件: %d", msg.session_id)
            return
        self._notify(GestureDetected(kind=msg.kind, intensity=msg.intensity, session_id=msg.session_id))

    def _on_openness(self, msg: OpennessUpdate) -> None:
        if not self._is_current(msg.session_id):
            return
        self._notify(OpennessUpdate(value=msg.value, session_id=msg.session_id))

    def close(self, timeout: float = 2.0) -> None:
        super().close(timeout)
        if self._active:
            self._shutdown()
