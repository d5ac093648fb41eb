"""阈值校准模块，根据"正常 / 眯眼 / 睁大"三个阶段的平均睁开度推导检测阈值"""

import logging
import math
from typing import Dict, Iterable, Optional

from models.data_models import CalibrationPhase, CalibrationResult

logger = logging.getLogger(__name__)

# 阈值顺序被破坏时的修正量
_MIN_MARGIN = 0.05

# 阶段采样参数（毫秒）
PHASE_DURATION_MS = 2000
SAMPLE_INTERVAL_MS = 50


class CalibrationError(Exception):
    """校准失败：某个阶段没有采到有效数据或阶段顺序错误"""


def capture_average(samples: Iterable[float]) -> float:
    """
    计算一个阶段的平均睁开度。

    Args:
        samples: 采样值，只保留有限正数

    Returns:
        平均值；没有有效样本时返回 0.0
    """
    valid = [
        v for v in samples
        if isinstance(v, (int, float)) and not isinstance(v, bool)
        and math.isfinite(v) and v > 0
    ]
    if not valid:
        return 0.0
    return sum(valid) / len(valid)


def derive_thresholds(normal_avg: float, squint_avg: float, wide_avg: float) -> CalibrationResult:
    """
    由三个阶段的平均值推导两个阈值。

    squint = (normal + squint_avg) / 2
    wide   = (normal + wide_avg) / 2

    随后保证 squint < normal < wide：不满足时分别修正为 normal -/+ 0.05。

    Raises:
        CalibrationError: 任一阶段平均值为 0（未采到数据）
    """
    if normal_avg == 0 or squint_avg == 0 or wide_avg == 0:
        raise CalibrationError("校准失败：摄像头未采集到数据，请重试")

    squint_threshold = round((normal_avg + squint_avg) / 2.0, 3)
    wide_threshold = round((normal_avg + wide_avg) / 2.0, 3)

    if squint_threshold >= normal_avg:
        squint_threshold = round(normal_avg - _MIN_MARGIN, 3)
    if wide_threshold <= normal_avg:
        wide_threshold = round(normal_avg + _MIN_MARGIN, 3)

    return CalibrationResult(
        normal_avg=normal_avg,
        squint_avg=squint_avg,
        wide_avg=wide_avg,
        squint_threshold=squint_threshold,
        wide_eye_threshold=wide_threshold,
    )


class ThresholdCalibrator:
    """按固定顺序记录三个阶段的平均值，推导并导出阈值"""

    PHASES = (CalibrationPhase.NORMAL, CalibrationPhase.SQUINT, CalibrationPhase.WIDE)

    def __init__(self):
        self._averages: Dict[CalibrationPhase, float] = {}
        self._calibration_result: Optional[CalibrationResult] = None

    @property
    def next_phase(self) -> Optional[CalibrationPhase]:
        """下一个待采集的阶段，全部完成时为 None"""
        for phase in self.PHASES:
            if phase not in self._averages:
                return phase
        return None

    @property
    def averages(self) -> Dict[CalibrationPhase, float]:
        return dict(self._averages)

    def record(self, phase: CalibrationPhase, average: float) -> None:
        """
        记录一个阶段的平均值。

        Raises:
            CalibrationError: 阶段顺序错误
        """
        expected = self.next_phase
        if phase != expected:
            expected_name = expected.value if expected else "无"
            raise CalibrationError(f"阶段顺序错误: 期望 {expected_name}，收到 {phase.value}")
        self._averages[phase] = average
        logger.info("校准阶段 %s 平均睁开度: %.3f", phase.value, average)

    def finish(self) -> CalibrationResult:
        """三个阶段全部完成后推导阈值"""
        if self.next_phase is not None:
            raise CalibrationError(f"校准未完成，缺少阶段: {self.next_phase.value}")
        self._calibration_result = derive_thresholds(
            self._averages[CalibrationPhase.NORMAL],
            self._averages[CalibrationPhase.SQUINT],
            self._averages[CalibrationPhase.WIDE],
        )
        return self._calibration_result

    def export(self, store) -> CalibrationResult:
        """
        把阈值写入设置存储，失败时不写入任何内容。

        Args:
            store: 提供 set(mapping) 的键值存储

        Returns:
            写入的 CalibrationResult
        """
        if self._calibration_result is None:
            self.finish()

        result = self._calibration_result
        store.set(result.to_settings())
        logger.info(
            "阈值已保存: 眯眼 < %.3f, 睁大 > %.3f",
            result.squint_threshold,
            result.wide_eye_threshold,
        )
        return result

    def reset(self):
        self._averages.clear()
        self._calibration_result = None
