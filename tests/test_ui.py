from types import SimpleNamespace

from interface import UIHandler


def test_clear_style_image_resets_uploader(monkeypatch, make_image):
    state = SimpleNamespace(style_image=make_image(), style_upload_count=0)
    monkeypatch.setattr(UIHandler.st, "session_state", state)

    UIHandler.clear_style_image()

    assert state.style_image is None
    assert state.style_upload_count == 1

    UIHandler.clear_style_image()
    assert state.style_upload_count == 2


def test_importing_ui_does_not_open_log_file():
    ui_logger = UIHandler.logger
    assert ui_logger.name == "ui"
    assert not any(handler.__class__.__name__ == "FileHandler" for handler in ui_logger.handlers)
