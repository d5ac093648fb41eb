"""缩放控制与状态徽标单元测试"""

import pytest

from actions.zoom import ActionHandler, BadgeStatus, StatusSurface, ZoomController
from models.data_models import GestureKind


class TestZoomController:

    def test_squint_zooms_in(self):
        zoom = ZoomController(step=0.1)
        zoom.handle(GestureKind.SQUINT, 0.7)
        assert zoom.zoom == pytest.approx(1.1)

    def test_wide_zooms_out(self):
        zoom = ZoomController(step=0.5)
        zoom.handle(GestureKind.SQUINT)
        zoom.handle(GestureKind.SQUINT)
        zoom.handle(GestureKind.WIDE_EYES)
        assert zoom.zoom == pytest.approx(1.5)

    def test_clamped(self):
        zoom = ZoomController(step=1.0, min_zoom=1.0, max_zoom=2.0)
        for _ in range(5):
            zoom.handle(GestureKind.SQUINT)
        assert zoom.zoom == 2.0
        for _ in range(5):
            zoom.handle(GestureKind.WIDE_EYES)
        assert zoom.zoom == 1.0

    def test_reset(self):
        zoom = ZoomController()
        zoom.handle(GestureKind.SQUINT)
        zoom.reset()
        assert zoom.zoom == 1.0

    def test_satisfies_protocol(self):
        assert isinstance(ZoomController(), ActionHandler)


class TestBadgeStatus:

    def test_toggle(self):
        badge = BadgeStatus()
        assert badge.text == ""
        badge.set_active(True)
        assert badge.text == "ON"
        assert badge.active
        badge.set_active(False)
        assert badge.text == ""

    def test_satisfies_protocol(self):
        assert isinstance(BadgeStatus(), StatusSurface)
