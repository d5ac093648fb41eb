"""检测宿主上下文单元测试"""

import numpy as np
import pytest

from models.data_models import GestureKind, ThresholdConfig
from models.messages import Frame, Gesture, Init, OpennessUpdate, Ready, Stop
from runtime.detector_host import DetectorHost
from fakes import FakeExtractor, RecordingContext


class _Clock:
    def __init__(self):
        self.now = 0

    def __call__(self):
        return self.now


def _frame(session_id=1):
    return Frame(image=np.zeros((4, 4, 3), dtype=np.uint8), session_id=session_id)


@pytest.fixture
def setup():
    extractor = FakeExtractor(openness=0.30)
    clock = _Clock()
    host = DetectorHost(lambda: extractor, clock=clock)
    parent = RecordingContext()
    host.connect(parent)
    return host, parent, extractor, clock


class TestInit:

    def test_replies_ready(self, setup):
        host, parent, _, _ = setup
        host.post(Init(session_id=3))
        host.drain()
        assert parent.of_type(Ready) == [Ready(session_id=3)]
        assert host.session_id == 3
        assert host.detector is not None

    def test_extractor_created_once(self, setup):
        host, _, _, _ = setup
        created = []
        host._extractor_factory = lambda: created.append(1) or FakeExtractor()
        host.post(Init(session_id=1))
        host.post(Init(session_id=2))
        host.drain()
        assert created == [1]

    def test_extractor_failure_replies_error(self, setup):
        host, parent, _, _ = setup

        def broken():
            raise RuntimeError("no model")

        host._extractor_factory = broken
        host.post(Init(session_id=4))
        host.drain()
        ready = parent.of_type(Ready)
        assert len(ready) == 1
        assert not ready[0].success
        assert "no model" in ready[0].error
        assert host.session_id is None
        assert host.detector is None

    def test_retry_after_extractor_failure(self, setup):
        host, parent, extractor, _ = setup
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("busy")
            return extractor

        host._extractor_factory = flaky
        host.post(Init(session_id=1))
        host.post(Init(session_id=2))
        host.drain()
        assert [r.success for r in parent.of_type(Ready)] == [False, True]
        assert host.session_id == 2

    def test_config_applied(self, setup):
        host, _, _, _ = setup
        config = ThresholdConfig(squint_threshold=0.2, wide_eye_threshold=0.7)
        host.post(Init(config=config, session_id=1))
        host.drain()
        assert host.detector.config == config

    def test_calibration_mode_has_no_detector(self, setup):
        host, _, _, _ = setup
        host.post(Init(calibration=True, session_id=1))
        host.drain()
        assert host.calibrating
        assert host.detector is None


class TestFrames:

    def test_frames_before_init_dropped(self, setup):
        host, parent, extractor, _ = setup
        host.post(_frame())
        host.drain()
        assert extractor.calls == 0
        assert parent.messages == []

    def test_emits_gesture_after_dwell(self, setup):
        host, parent, _, clock = setup
        host.post(Init(session_id=1))
        host.drain()
        for t in range(0, 401, 100):
            clock.now = t
            host.post(_frame())
            host.drain()
        gestures = parent.of_type(Gesture)
        assert len(gestures) == 1
        assert gestures[0].kind == GestureKind.SQUINT
        assert gestures[0].timestamp == 400
        assert gestures[0].session_id == 1

    def test_stale_session_frames_dropped(self, setup):
        host, _, extractor, _ = setup
        host.post(Init(session_id=2))
        host.post(_frame(session_id=1))
        host.drain()
        assert extractor.calls == 0

    def test_extractor_failure_skips_frame(self, setup):
        host, parent, extractor, clock = setup
        host.post(Init(session_id=1))
        host.drain()
        extractor.raise_next = True
        host.post(_frame())
        clock.now = 100
        host.post(_frame())
        host.drain()
        assert extractor.calls == 2
        assert parent.of_type(Gesture) == []

    def test_calibration_streams_openness(self, setup):
        host, parent, extractor, _ = setup
        host.post(Init(calibration=True, session_id=1))
        host.post(_frame())
        host.drain()
        updates = parent.of_type(OpennessUpdate)
        assert len(updates) == 1
        assert updates[0].value == pytest.approx(0.30)

    def test_calibration_skips_no_face(self, setup):
        host, parent, extractor, _ = setup
        extractor.openness = None
        host.post(Init(calibration=True, session_id=1))
        host.post(_frame())
        host.drain()
        assert parent.of_type(OpennessUpdate) == []


class TestStop:

    def test_stop_discards_detector(self, setup):
        host, parent, extractor, _ = setup
        host.post(Init(session_id=1))
        host.post(Stop(session_id=1))
        host.post(_frame())
        host.drain()
        assert host.detector is None
        assert host.session_id is None
        assert extractor.calls == 0

    def test_stale_stop_ignored(self, setup):
        host, _, _, _ = setup
        host.post(Init(session_id=2))
        host.post(Stop(session_id=1))
        host.drain()
        assert host.session_id == 2

    def test_close_releases_extractor(self, setup):
        host, _, extractor, _ = setup
        host.post(Init(session_id=1))
        host.drain()
        host.close()
        assert extractor.closed
