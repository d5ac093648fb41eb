"""眯眼 / 睁大手势检测模块：驻留时长 + 冷却时间 + 双阈值滞回"""

import math
from dataclasses import replace
from typing import Optional

from models.data_models import (
    DetectorPhase,
    DetectorState,
    GestureEvent,
    GestureKind,
    OpennessSample,
    ThresholdConfig,
)


class GestureDetector:
    """
    消费带时间戳的睁开度样本，输出离散手势事件。

    - 低于眯眼阈值持续 squint_duration 毫秒 -> Squint
    - 高于睁大阈值持续 squint_duration 毫秒 -> WideEyes
    - 两个阈值之间为滞回区，清空两个候选计时
    - 任意两次事件之间至少间隔 cooldown 毫秒

    时间全部取自样本时间戳，与帧率无关。畸形样本按滞回区处理，不抛异常。
    """

    def __init__(self, config: Optional[ThresholdConfig] = None):
        self._config = (config or ThresholdConfig()).validate()
        self._state = DetectorState()

    @property
    def config(self) -> ThresholdConfig:
        return self._config

    @property
    def state(self) -> DetectorState:
        """当前状态的快照"""
        return replace(self._state)

    def update(self, sample: OpennessSample) -> Optional[GestureEvent]:
        """
        处理一个样本。

        Args:
            sample: 睁开度样本；face_detected 为 False 时视为中性

        Returns:
            满足驻留与冷却条件时返回 GestureEvent，否则返回 None
        """
        value = getattr(sample, "value", None)
        now = getattr(sample, "timestamp", None)
        if (
            not getattr(sample, "face_detected", False)
            or not self._is_number(value)
            or not self._is_number(now)
        ):
            self._clear_candidates()
            return None

        cfg = self._config
        if value < cfg.squint_threshold:
            return self._advance(DetectorPhase.SQUINT_CANDIDATE, GestureKind.SQUINT, 1.0 - value, now)
        if value > cfg.wide_eye_threshold:
            return self._advance(DetectorPhase.WIDE_CANDIDATE, GestureKind.WIDE_EYES, value, now)

        self._clear_candidates()
        return None

    def reset(self):
        """清空候选计时和冷却时间"""
        self._state = DetectorState()

    def _advance(self, phase: DetectorPhase, kind: GestureKind,
                 intensity: float, now: int) -> Optional[GestureEvent]:
        state = self._state
        # 反方向的候选计时无条件清空
        if state.phase != phase or state.candidate_since is None:
            state.phase = phase
            state.candidate_since = now

        dwell = now - state.candidate_since
        since_last = now - state.last_emission
        if dwell >= self._config.squint_duration and since_last >= self._config.cooldown:
            state.phase = DetectorPhase.NEUTRAL
            state.candidate_since = None
            state.last_emission = now
            return GestureEvent(kind=kind, intensity=intensity, timestamp=now)
        return None

    def _clear_candidates(self):
        self._state.phase = DetectorPhase.NEUTRAL
        self._state.candidate_since = None

    @staticmethod
    def _is_number(value) -> bool:
        return (
            isinstance(value, (int, float))
            and not isinstance(value, bool)
            and math.isfinite(value)
        )
