"""阈值校准模块单元测试"""

import pytest

from calibration.threshold_calibrator import (
    CalibrationError,
    ThresholdCalibrator,
    capture_average,
    derive_thresholds,
)
from models.data_models import CalibrationPhase
from storage.settings_store import SettingsStore


class TestCaptureAverage:

    def test_basic_values(self):
        assert capture_average([0.4, 0.5, 0.6]) == pytest.approx(0.5)

    def test_empty(self):
        assert capture_average([]) == 0.0

    def test_ignores_invalid_samples(self):
        samples = [0.4, 0.0, -1.0, float("nan"), float("inf"), None, True, 0.6]
        assert capture_average(samples) == pytest.approx(0.5)

    def test_all_invalid(self):
        assert capture_average([0.0, 0.0, None]) == 0.0


class TestDeriveThresholds:

    def test_midpoints(self):
        result = derive_thresholds(0.45, 0.30, 0.55)
        assert result.squint_threshold == pytest.approx(0.375)
        assert result.wide_eye_threshold == pytest.approx(0.50)

    def test_rounded_to_three_decimals(self):
        result = derive_thresholds(0.4112, 0.3, 0.6)
        assert result.squint_threshold == pytest.approx(0.356)
        assert result.wide_eye_threshold == pytest.approx(0.506)

    def test_squint_not_below_normal_is_clamped(self):
        # 用户"眯眼"时反而睁得更大
        result = derive_thresholds(0.45, 0.50, 0.60)
        assert result.squint_threshold == pytest.approx(0.40)
        assert result.squint_threshold < result.normal_avg

    def test_wide_not_above_normal_is_clamped(self):
        result = derive_thresholds(0.45, 0.30, 0.40)
        assert result.wide_eye_threshold == pytest.approx(0.50)
        assert result.wide_eye_threshold > result.normal_avg

    @pytest.mark.parametrize("averages", [(0, 0.3, 0.5), (0.45, 0, 0.5), (0.45, 0.3, 0)])
    def test_zero_average_fails(self, averages):
        with pytest.raises(CalibrationError):
            derive_thresholds(*averages)


class TestThresholdCalibrator:

    def _record_all(self, calibrator, normal=0.45, squint=0.30, wide=0.55):
        calibrator.record(CalibrationPhase.NORMAL, normal)
        calibrator.record(CalibrationPhase.SQUINT, squint)
        calibrator.record(CalibrationPhase.WIDE, wide)

    def test_phase_order(self):
        calibrator = ThresholdCalibrator()
        assert calibrator.next_phase == CalibrationPhase.NORMAL
        calibrator.record(CalibrationPhase.NORMAL, 0.45)
        assert calibrator.next_phase == CalibrationPhase.SQUINT
        calibrator.record(CalibrationPhase.SQUINT, 0.30)
        assert calibrator.next_phase == CalibrationPhase.WIDE
        calibrator.record(CalibrationPhase.WIDE, 0.55)
        assert calibrator.next_phase is None

    def test_out_of_order_rejected(self):
        calibrator = ThresholdCalibrator()
        with pytest.raises(CalibrationError):
            calibrator.record(CalibrationPhase.WIDE, 0.55)
        assert calibrator.averages == {}

    def test_finish_incomplete_fails(self):
        calibrator = ThresholdCalibrator()
        calibrator.record(CalibrationPhase.NORMAL, 0.45)
        with pytest.raises(CalibrationError):
            calibrator.finish()

    def test_export_writes_thresholds(self, tmp_path):
        store = SettingsStore(str(tmp_path / "settings.json"))
        calibrator = ThresholdCalibrator()
        self._record_all(calibrator)

        result = calibrator.export(store)

        assert result.squint_threshold == pytest.approx(0.375)
        saved = SettingsStore(str(tmp_path / "settings.json")).get()
        assert saved == {"squint_threshold": 0.375, "wide_eye_threshold": 0.5}

    def test_export_failure_writes_nothing(self, tmp_path):
        store = SettingsStore(str(tmp_path / "settings.json"))
        calibrator = ThresholdCalibrator()
        self._record_all(calibrator, squint=0.0)

        with pytest.raises(CalibrationError):
            calibrator.export(store)
        assert store.get() == {}

    def test_reset(self):
        calibrator = ThresholdCalibrator()
        self._record_all(calibrator)
        calibrator.finish()
        calibrator.reset()
        assert calibrator.next_phase == CalibrationPhase.NORMAL
        assert calibrator.averages == {}
