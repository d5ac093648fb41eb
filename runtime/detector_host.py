"""检测宿主上下文：持有关键点提取器和手势检测器，逐帧产出手势或原始睁开度"""

import logging
import time
from typing import Callable, Optional

from detectors.eye_analyzer import EyeAnalyzer
from detectors.gesture_detector import GestureDetector
from models.messages import Frame, Gesture, Init, OpennessUpdate, Ready, Stop
from runtime.context import Context

logger = logging.getLogger(__name__)


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class DetectorHost(Context):
    """
    接收 Init / Frame / Stop，向父上下文发送 Ready / Gesture / OpennessUpdate。
    提取器创建失败时回复带 error 的 Ready，宿主保持未初始化状态。

    检测模式和校准模式互斥：校准模式下不创建 GestureDetector，只转发原始睁开度。
    初始化握手完成之前收到的帧直接丢弃。
    """

    name = "detector-host"

    def __init__(self, extractor_factory: Callable, clock: Optional[Callable[[], int]] = None, scheduler=None):
        super().__init__(scheduler)
        self._extractor_factory = extractor_factory
        self._extractor = None
        self._clock = clock or monotonic_ms
        self._analyzer = EyeAnalyzer()
        self._detector: Optional[GestureDetector] = None
        self._calibrating = False
        self._session_id: Optional[int] = None
        self._parent: Optional[Context] = None

        self.register(Init, self._on_init)
        self.register(Frame, self._on_frame)
        self.register(Stop, self._on_stop)

    def connect(self, parent: Context) -> None:
        self._parent = parent

    @property
    def session_id(self) -> Optional[int]:
        return self._session_id

    @property
    def detector(self) -> Optional[GestureDetector]:
        return self._detector

    @property
    def calibrating(self) -> bool:
        return self._calibrating

    def _send(self, message) -> None:
        if self._parent is not None:
            self._parent.post(message)

    def _on_init(self, msg: Init) -> None:
        if self._extractor is None:
            logger.info("初始化关键点提取器...")
            try:
                self._extractor = self._extractor_factory()
            except Exception as e:
                logger.exception("关键点提取器初始化失败")
                self._send(Ready(
                    session_id=msg.session_id,
                    error=f"Detector initialization failed: {str(e) or type(e).__name__}",
                ))
                return
            logger.info("关键点提取器初始化完成")

        self._session_id = msg.session_id
        self._calibrating = msg.calibration
        self._detector = None if msg.calibration else GestureDetector(msg.config)

        if msg.calibration:
            logger.info("检测宿主进入校准模式 (session=%d)", msg.session_id)
        else:
            logger.info(
                "检测宿主进入检测模式 (session=%d): 眯眼 < %.3f, 睁大 > %.3f",
                msg.session_id,
                msg.config.squint_threshold,
                msg.config.wide_eye_threshold,
            )
        self._send(Ready(session_id=msg.session_id))

    def _on_frame(self, msg: Frame) -> None:
        if self._extractor is None or self._session_id is None:
            logger.debug("检测宿主未初始化，丢弃帧")
            return
        if msg.session_id != self._session_id:
            logger.debug("丢弃过期会话的帧: %d", msg.session_id)
            return

        try:
            landmarks = self._extractor.detect(msg.image)
        except Exception as e:
            # 单帧提取失败不影响后续帧
            logger.debug("关键点提取失败: %s", e)
            return

        sample = self._analyzer.measure(landmarks, self._clock())

        if self._calibrating:
            if sample.face_detected:
                self._send(OpennessUpdate(value=sample.value, session_id=self._session_id))
            return

        event = self._detector.update(sample)
        if event is not None:
            logger.info("检测到手势 %s (强度 %.3f)", event.kind.value, event.intensity)
            self._send(Gesture(
                kind=event.kind,
                intensity=event.intensity,
                timestamp=event.timestamp,
                session_id=self._session_id,
            ))

    def _on_stop(self, msg: Stop) -> None:
        if msg.session_id != self._session_id:
            logger.debug("忽略过期会话的停止命令: %d", msg.session_id)
            return
        self._detector = None
        self._calibrating = False
        self._session_id = None
        logger.info("检测宿主已停止 (session=%d)", msg.session_id)

    def close(self, timeout: float = 2.0) -> None:
        super().close(timeout)
        if self._extractor is not None:
            self._extractor.close()
            self._extractor = None
