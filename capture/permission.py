"""首次摄像头授权流程"""

import logging
from typing import Callable

from models.data_models import CameraAccessError

logger = logging.getLogger(__name__)


def request_camera_permission(store, camera_factory: Callable) -> None:
    """
    成功打开摄像头并读到一帧后，记录授权状态。

    Args:
        store: SettingsStore
        camera_factory: 创建摄像头对象的工厂，对象需提供 open() / release()

    Raises:
        CameraAccessError: 授权失败，此时不写入存储
    """
    camera = camera_factory()
    try:
        camera.open()
    except CameraAccessError as e:
        logger.error("摄像头授权失败: %s", e)
        raise
    finally:
        camera.release()

    store.grant_permission()
    logger.info("摄像头授权已保存")
