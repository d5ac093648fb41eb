"""校准向导上下文单元测试"""

import pytest

from calibration.wizard import CalibrationWizard
from models.data_models import CalibrationPhase, CameraAccessError, CameraErrorKind
from models.messages import CancelCalibration, CapturePhase, FinishCalibration, StartCalibration
from runtime.host_manager import HostManager, PipelineLock
from storage.settings_store import SettingsStore
from fakes import CameraFactory, FakeExtractor, ManualScheduler


class WizardHarness:

    def __init__(self, camera_error=None, extractor_factory=None):
        self.bridge_paused = False
        self.scheduler = ManualScheduler(self._contexts)
        self.store = SettingsStore()
        self.extractor = FakeExtractor(0.45)
        self.cameras = CameraFactory(camera_error)
        self.manager = HostManager(
            self.cameras, extractor_factory or (lambda: self.extractor),
            frame_interval_ms=100, scheduler=self.scheduler, autostart=False,
        )
        self.lock = PipelineLock()
        self.wizard = CalibrationWizard(
            self.store, self.manager, pipeline_lock=self.lock,
            duration_ms=2000, interval_ms=50, scheduler=self.scheduler,
        )

    def _contexts(self):
        contexts = [self.wizard]
        if self.manager.bridge is not None and not self.bridge_paused:
            contexts.extend([self.manager.bridge, self.manager.bridge.host])
        return contexts

    def request(self, message):
        future = self.wizard.request(message)
        self.scheduler.settle()
        return future

    def start(self):
        return self.request(StartCalibration()).result(timeout=0)

    def capture(self, phase, openness):
        self.extractor.openness = openness
        # 先让一帧新数据到达
        self.scheduler.advance(100)
        future = self.request(CapturePhase(phase=phase))
        self.scheduler.advance(2000)
        return future.result(timeout=0)


@pytest.fixture
def harness():
    return WizardHarness()


class TestStart:

    def test_start_opens_calibration_pipeline(self, harness):
        response = harness.start()
        assert response.success
        assert harness.wizard.ready
        assert harness.lock.mode == PipelineLock.CALIBRATION
        assert harness.manager.bridge.host.calibrating

    def test_start_twice_is_noop(self, harness):
        harness.start()
        assert harness.start().success
        assert len(harness.cameras.cameras) == 1

    def test_blocked_by_monitoring(self, harness):
        harness.lock.acquire(PipelineLock.DETECTION)
        response = harness.start()
        assert not response.success
        assert harness.manager.bridge is None

    def test_camera_failure_releases_lock(self):
        harness = WizardHarness(camera_error=CameraAccessError(CameraErrorKind.PERMISSION_DENIED))
        response = harness.start()
        assert not response.success
        assert response.data["kind"] == "permission_denied"
        assert harness.lock.mode is None
        assert not harness.wizard.ready

    def test_extractor_failure_releases_lock(self):
        def broken_extractor():
            raise RuntimeError("model file missing")

        harness = WizardHarness(extractor_factory=broken_extractor)
        response = harness.start()
        assert not response.success
        assert "model file missing" in response.error
        assert harness.lock.mode is None
        assert not harness.wizard.ready
        assert harness.cameras.last.release_calls == 1

    def test_cancel_while_starting_closes_camera(self, harness):
        harness.bridge_paused = True
        start = harness.request(StartCalibration())
        harness.request(CancelCalibration())
        assert start.result(timeout=0).success is False
        assert harness.lock.mode == PipelineLock.CALIBRATION

        harness.bridge_paused = False
        harness.scheduler.settle()

        assert not harness.manager.bridge.active
        assert harness.cameras.last.release_calls == 1
        assert harness.lock.mode is None
        assert not harness.wizard.ready


class TestCapture:

    def test_full_calibration(self, harness):
        harness.start()
        normal = harness.capture("normal", 0.45)
        assert normal.success
        assert normal.data["average"] == pytest.approx(0.45)
        assert normal.data["next_phase"] == "squint"
        assert harness.capture("squint", 0.30).success
        wide = harness.capture("wide", 0.55)
        assert wide.data["next_phase"] is None

        result = harness.request(FinishCalibration()).result(timeout=0)

        assert result.success
        assert result.data["squint_threshold"] == pytest.approx(0.375)
        assert result.data["wide_eye_threshold"] == pytest.approx(0.50)
        saved = harness.store.get()
        assert saved["squint_threshold"] == pytest.approx(0.375)
        assert saved["wide_eye_threshold"] == pytest.approx(0.50)
        assert harness.lock.mode is None
        assert not harness.manager.bridge.active

    def test_samples_collected_at_interval(self, harness):
        harness.start()
        response = harness.capture("normal", 0.45)
        # 2000ms 内每 50ms 采样一次，截止时刻的采样被硬停止
        assert response.data["samples"] == 39

    def test_phase_without_data_can_retry(self, harness):
        harness.start()
        failed = harness.capture("normal", None)
        assert not failed.success
        assert harness.wizard.calibrator.next_phase == CalibrationPhase.NORMAL
        assert harness.store.get() == {}

        retried = harness.capture("normal", 0.45)
        assert retried.success

    def test_phase_without_face_after_previous_phase_fails(self, harness):
        harness.start()
        assert harness.capture("normal", 0.45).success
        failed = harness.capture("squint", None)
        assert not failed.success
        assert harness.wizard.calibrator.next_phase == CalibrationPhase.SQUINT

    def test_not_ready_before_start(self, harness):
        response = harness.request(CapturePhase(phase="normal")).result(timeout=0)
        assert not response.success
        assert response.error == "Detector not ready"

    def test_out_of_order_phase(self, harness):
        harness.start()
        response = harness.request(CapturePhase(phase="wide")).result(timeout=0)
        assert not response.success
        assert "Expected phase normal" in response.error

    def test_unknown_phase(self, harness):
        harness.start()
        response = harness.request(CapturePhase(phase="blink")).result(timeout=0)
        assert not response.success

    def test_capture_in_progress(self, harness):
        harness.start()
        first = harness.request(CapturePhase(phase="normal"))
        second = harness.request(CapturePhase(phase="normal")).result(timeout=0)
        assert not second.success
        assert second.error == "Capture in progress"
        harness.scheduler.advance(2000)
        assert first.result(timeout=0).success

    def test_no_sampling_after_deadline(self, harness):
        harness.start()
        harness.capture("normal", 0.45)
        samples = list(harness.wizard._samples)
        harness.scheduler.advance(500)
        assert harness.wizard._samples == samples


class TestFinishAndCancel:

    def test_finish_incomplete_writes_nothing(self, harness):
        harness.start()
        harness.capture("normal", 0.45)
        response = harness.request(FinishCalibration()).result(timeout=0)
        assert not response.success
        assert harness.store.get() == {}
        assert harness.lock.mode is None

    def test_cancel_discards_progress(self, harness):
        harness.start()
        harness.capture("normal", 0.45)
        response = harness.request(CancelCalibration()).result(timeout=0)
        assert response.success
        assert harness.wizard.calibrator.next_phase == CalibrationPhase.NORMAL
        assert harness.lock.mode is None
        assert not harness.manager.bridge.active
        assert harness.store.get() == {}

    def test_cancel_during_capture_fails_pending_phase(self, harness):
        harness.start()
        pending = harness.request(CapturePhase(phase="normal"))
        harness.request(CancelCalibration())
        response = pending.result(timeout=0)
        assert not response.success
        assert response.error == "Calibration cancelled"

    def test_lock_held_until_camera_released(self, harness):
        harness.start()
        harness.bridge_paused = True
        assert harness.request(CancelCalibration()).result(timeout=0).success
        assert harness.cameras.last.opened
        assert harness.lock.mode == PipelineLock.CALIBRATION
        assert not harness.lock.acquire(PipelineLock.DETECTION)

        harness.bridge_paused = False
        harness.scheduler.settle()

        assert not harness.cameras.last.opened
        assert harness.lock.mode is None

    def test_restart_after_finish(self, harness):
        harness.start()
        harness.request(CancelCalibration())
        assert harness.start().success
        assert harness.wizard.calibrator.next_phase == CalibrationPhase.NORMAL
