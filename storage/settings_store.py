"""持久化键值存储，保存摄像头授权状态和检测阈值"""

import json
import logging
import os
import threading
from typing import Iterable, Optional

from models.data_models import ConfigError, ThresholdConfig

logger = logging.getLogger(__name__)

# 键名
CAMERA_PERMISSION_GRANTED = "camera_permission_granted"


class SettingsStore:
    """基于 JSON 文件的线程安全键值存储；path 为 None 时只保存在内存中"""

    def __init__(self, path: Optional[str] = None):
        self._path = path
        self._lock = threading.Lock()
        self._data = self._load()

    def _load(self) -> dict:
        """从磁盘加载，文件缺失或损坏时返回空字典"""
        if self._path is None or not os.path.exists(self._path):
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("无法读取设置文件 %s: %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("设置文件格式错误 %s，已忽略", self._path)
            return {}
        return data

    def _save(self) -> None:
        if self._path is None:
            return
        os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=4, ensure_ascii=False)

    def get(self, keys: Optional[Iterable[str]] = None) -> dict:
        """读取指定键（缺失的键不出现在结果中），keys 为 None 时返回全部"""
        with self._lock:
            if keys is None:
                return dict(self._data)
            return {k: self._data[k] for k in keys if k in self._data}

    def set(self, values: dict) -> None:
        """写入若干键并立即落盘"""
        with self._lock:
            self._data.update(values)
            self._save()

    def remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)
            self._save()

    # ---- 便捷方法 ----

    def permission_granted(self) -> bool:
        return bool(self.get([CAMERA_PERMISSION_GRANTED]).get(CAMERA_PERMISSION_GRANTED, False))

    def grant_permission(self) -> None:
        self.set({CAMERA_PERMISSION_GRANTED: True})

    def threshold_config(self, base: Optional[ThresholdConfig] = None) -> ThresholdConfig:
        """
        用已保存的设置覆盖默认阈值。

        已保存的组合非法时（例如被手工改坏）回退到 base 并记录警告。
        """
        base = base or ThresholdConfig()
        overrides = self.get(ThresholdConfig.FIELDS)
        try:
            return base.with_overrides(overrides)
        except (ConfigError, TypeError) as e:
            logger.warning("已保存的阈值设置无效，使用默认值: %s", e)
            return base

    def update_thresholds(self, overrides: dict) -> ThresholdConfig:
        """
        校验并保存部分阈值覆盖。

        已保存的组合非法时写入完整的合并结果，而不只是本次的覆盖项。

        Raises:
            ConfigError: 合并后的配置违反 squint < wide 或其他约束，此时不写入
        """
        unknown = set(overrides) - set(ThresholdConfig.FIELDS)
        if unknown:
            raise ConfigError(f"未知配置项: {', '.join(sorted(unknown))}")
        try:
            ThresholdConfig().with_overrides(self.get(ThresholdConfig.FIELDS))
            stored_valid = True
        except (ConfigError, TypeError):
            stored_valid = False

        merged = self.threshold_config().with_overrides(overrides)
        if stored_valid:
            self.set({k: v for k, v in overrides.items() if v is not None})
        else:
            # 已保存的组合本身非法，整体改写为合并后的配置
            logger.warning("已保存的阈值设置无效，改写为完整配置")
            self.set(merged.to_dict())
        return merged
