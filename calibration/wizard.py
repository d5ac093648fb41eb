"""校准向导上下文：依次采集"正常 / 眯眼 / 睁大"三个阶段并保存阈值"""

import logging
from concurrent.futures import Future
from typing import List, Optional

from calibration.threshold_calibrator import (
    PHASE_DURATION_MS,
    SAMPLE_INTERVAL_MS,
    CalibrationError,
    ThresholdCalibrator,
    capture_average,
)
from models.data_models import CalibrationPhase
from models.messages import (
    CameraError,
    CameraReleased,
    CancelCalibration,
    CapturePhase,
    FinishCalibration,
    MonitoringStatus,
    OpennessUpdate,
    PhaseDeadline,
    Ready,
    Response,
    SampleTick,
    StartAcknowledged,
    StartCalibration,
    StartCamera,
    StopCamera,
)
from runtime.context import Context, Reply, TimerHandle
from runtime.host_manager import HostManager, PipelineLock

logger = logging.getLogger(__name__)


class CalibrationWizard(Context):
    """
    拥有一条独立的 桥接 + 检测宿主 管线（校准模式），
    接收原始睁开度流，按固定间隔采样并在阶段截止时求平均。

    与检测会话互斥：检测会话占用管线时拒绝开始校准。
    """

    name = "calibration-wizard"

    def __init__(self, store, host_manager: HostManager,
                 pipeline_lock: Optional[PipelineLock] = None,
                 duration_ms: int = PHASE_DURATION_MS,
                 interval_ms: int = SAMPLE_INTERVAL_MS,
                 scheduler=None):
        super().__init__(scheduler)
        self._store = store
        self._host_manager = host_manager
        self._pipeline_lock = pipeline_lock or PipelineLock()
        self._duration_ms = duration_ms
        self._interval_ms = interval_ms

        self._calibrator = ThresholdCalibrator()
        self._session_id = 0
        self._camera_active = False
        self._host_ready = False
        self._start_reply: Optional[Reply] = None
        self._current_value = 0.0

        self._token = 0
        self._phase: Optional[CalibrationPhase] = None
        self._phase_reply: Optional[Reply] = None
        self._samples: List[float] = []
        self._sample_timer: Optional[TimerHandle] = None
        self._deadline_timer: Optional[TimerHandle] = None

        self.register(StartCalibration, self._on_start)
        self.register(StartAcknowledged, self._on_camera_ack)
        self.register(CapturePhase, self._on_capture)
        self.register(SampleTick, self._on_sample_tick)
        self.register(PhaseDeadline, self._on_deadline)
        self.register(FinishCalibration, self._on_finish)
        self.register(CancelCalibration, self._on_cancel)
        self.register(OpennessUpdate, self._on_openness)
        self.register(Ready, self._on_ready)
        self.register(MonitoringStatus, self._on_monitoring_status)
        self.register(CameraReleased, self._on_camera_released)
        self.register(CameraError, self._on_camera_error)

    @property
    def calibrator(self) -> ThresholdCalibrator:
        return self._calibrator

    @property
    def ready(self) -> bool:
        return self._camera_active and self._host_ready

    @property
    def current_value(self) -> float:
        return self._current_value

    # ---- 启动 / 结束 ----

    def _on_start(self, msg: StartCalibration, reply: Reply) -> None:
        if self._camera_active or self._start_reply is not None:
            reply.send(Response.ok(ready=self.ready))
            return
        if not self._pipeline_lock.acquire(PipelineLock.CALIBRATION):
            reply.send(Response.fail("Monitoring is active, stop it before calibrating"))
            return

        self._calibrator.reset()
        self._current_value = 0.0
        self._session_id += 1
        session_id = self._session_id
        self._start_reply = reply

        try:
            self._host_manager.ensure_created(self)
            future = self._host_manager.bridge.request(StartCamera(calibration=True, session_id=session_id))
        except Exception as e:
            logger.exception("校准启动失败")
            self._release()
            self._answer_start(Response.fail(str(e) or type(e).__name__))
            return

        future.add_done_callback(lambda f: self.post(
            StartAcknowledged(session_id=session_id, response=self._future_response(f))
        ))
        logger.info("校准会话 %d 启动中", session_id)

    @staticmethod
    def _future_response(future: Future) -> Response:
        exc = future.exception()
        if exc is not None:
            return Response.fail(str(exc) or type(exc).__name__)
        return future.result()

    def _on_camera_ack(self, msg: StartAcknowledged) -> None:
        if msg.session_id != self._session_id or self._start_reply is None:
            return
        if msg.response.success:
            self._camera_active = True
            self._answer_start(Response.ok(ready=self._host_ready))
        else:
            logger.error("校准摄像头启动失败: %s", msg.response.error)
            self._release()
            self._answer_start(msg.response)

    def _answer_start(self, response: Response) -> None:
        if self._start_reply is not None:
            self._start_reply.send(response)
            self._start_reply = None

    def _on_finish(self, msg: FinishCalibration, reply: Reply) -> None:
        if self._phase is not None:
            reply.send(Response.fail("Capture in progress"))
            return
        try:
            result = self._calibrator.finish()
        except CalibrationError as e:
            logger.warning("校准失败: %s", e)
            self._shutdown()
            reply.send(Response.fail(str(e)))
            return

        self._calibrator.export(self._store)
        self._shutdown()
        reply.send(Response.ok(
            normal=round(result.normal_avg, 3),
            squint=round(result.squint_avg, 3),
            wide=round(result.wide_avg, 3),
            squint_threshold=result.squint_threshold,
            wide_eye_threshold=result.wide_eye_threshold,
        ))

    def _on_cancel(self, msg: CancelCalibration, reply: Reply) -> None:
        self._shutdown()
        reply.send(Response.ok())

    def _shutdown(self) -> None:
        """停止采样、关闭摄像头，丢弃未完成的结果；摄像头确认释放后归还管线"""
        camera_pending = self._camera_active or self._start_reply is not None
        self._stop_capture()
        if self._phase_reply is not None:
            self._phase_reply.send(Response.fail("Calibration cancelled"))
            self._phase_reply = None
        self._phase = None
        self._answer_start(Response.fail("Calibration cancelled"))
        self._calibrator.reset()
        bridge = self._host_manager.bridge
        if not camera_pending or bridge is None:
            self._release()
            return
        self._camera_active = False
        self._host_ready = False
        session_id = self._session_id
        future = bridge.request(StopCamera(session_id=session_id))
        future.add_done_callback(lambda f: self.post(CameraReleased(session_id=session_id)))

    def _release(self) -> None:
        self._camera_active = False
        self._host_ready = False
        self._pipeline_lock.release(PipelineLock.CALIBRATION)

    def _on_camera_released(self, msg: CameraReleased) -> None:
        if msg.session_id != self._session_id or self._camera_active or self._start_reply is not None:
            return
        self._release()
        logger.debug("校准摄像头已释放，归还管线")

    # ---- 阶段采集 ----

    def _on_capture(self, msg: CapturePhase, reply: Reply) -> None:
        try:
            phase = CalibrationPhase(msg.phase)
        except ValueError:
            reply.send(Response.fail(f"Unknown phase: {msg.phase}"))
            return
        if not self.ready:
            reply.send(Response.fail("Detector not ready"))
            return
        if self._phase is not None:
            reply.send(Response.fail("Capture in progress"))
            return
        expected = self._calibrator.next_phase
        if phase != expected:
            expected_name = expected.value if expected else "none"
            reply.send(Response.fail(f"Expected phase {expected_name}, got {phase.value}"))
            return

        self._token += 1
        self._phase = phase
        self._phase_reply = reply
        self._samples = []
        # 只采样本阶段内到达的读数
        self._current_value = 0.0
        self._sample_timer = self.call_later(self._interval_ms, SampleTick(token=self._token))
        self._deadline_timer = self.call_later(self._duration_ms, PhaseDeadline(token=self._token))
        logger.info("开始采集校准阶段 %s (%dms)", phase.value, self._duration_ms)

    def _on_sample_tick(self, msg: SampleTick) -> None:
        if self._phase is None or msg.token != self._token:
            return
        self._samples.append(self._current_value)
        self._sample_timer = self.call_later(self._interval_ms, SampleTick(token=self._token))

    def _on_deadline(self, msg: PhaseDeadline) -> None:
        if self._phase is None or msg.token != self._token:
            return
        self._stop_capture()
        phase, reply = self._phase, self._phase_reply
        self._phase = None
        self._phase_reply = None

        average = capture_average(self._samples)
        if average == 0:
            logger.warning("校准阶段 %s 未采集到有效数据", phase.value)
            reply.send(Response.fail("Camera did not capture data, please try again", phase=phase.value, average=0.0))
            return

        self._calibrator.record(phase, average)
        next_phase = self._calibrator.next_phase
        reply.send(Response.ok(
            phase=phase.value,
            average=round(average, 3),
            samples=len(self._samples),
            next_phase=next_phase.value if next_phase else None,
        ))

    def _stop_capture(self) -> None:
        # 阶段截止时硬停止采样定时器，token 递增使在途的 tick 失效
        self._token += 1
        for timer in (self._sample_timer, self._deadline_timer):
            if timer is not None:
                timer.cancel()
        self._sample_timer = None
        self._deadline_timer = None

    # ---- 管线事件 ----

    def _on_openness(self, msg: OpennessUpdate) -> None:
        if msg.session_id == self._session_id and self._camera_active:
            self._current_value = msg.value

    def _on_ready(self, msg: Ready) -> None:
        if msg.session_id == self._session_id and msg.success:
            self._host_ready = True
            logger.info("校准检测宿主已就绪")

    def _on_monitoring_status(self, msg: MonitoringStatus) -> None:
        if msg.session_id == self._session_id and not msg.active and self._camera_active:
            logger.warning("校准摄像头已停止")
            self._shutdown()

    def _on_camera_error(self, msg: CameraError) -> None:
        logger.error("校准摄像头错误: %s", msg.error)
