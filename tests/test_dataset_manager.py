import io
import zipfile

import pytest
import requests

from data import DatasetManager as dataset_module
from data.DatasetManager import DatasetManager, DatasetSource, DatasetState, DatasetStatus


def make_archive(make_image, image_count=5):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("val2017/", "")
        for index in range(image_count):
            image_bytes = io.BytesIO()
            make_image(size=(16, 16), seed=index).save(image_bytes, format="JPEG")
            archive.writestr(f"val2017/{index:012d}.jpg", image_bytes.getvalue())
        archive.writestr("val2017/README.txt", "not an image")
    return buffer.getvalue()


class FakeResponse:
    def __init__(self, payload, send_length=True, status_code=200, headers=None):
        self.payload = payload
        self.status_code = status_code
        self.headers = {"content-length": str(len(payload))} if send_length else {}
        if headers is not None:
            self.headers = headers
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.payload), chunk_size):
            yield self.payload[start:start + chunk_size]

    def close(self):
        self.closed = True


@pytest.fixture
def fake_get(monkeypatch):
    calls = {}

    def install(response):
        def get(url, stream=False, timeout=None):
            calls["url"] = url
            calls["stream"] = stream
            return response
        monkeypatch.setattr(dataset_module.requests, "get", get)
        return calls

    return install


def leftover_archives(app_paths):
    return list(app_paths.base_dir.glob("coco_*.zip"))


def test_state_descriptions_and_equality():
    assert DatasetState.not_downloaded().describe() == "Not downloaded"
    assert DatasetState.downloading(0.42).describe() == "Downloading 42%"
    assert DatasetState.downloading(None).describe() == "Downloading..."
    assert DatasetState.ready(600).describe() == "600 images ready"
    assert DatasetState.error("boom").describe() == "boom"
    assert DatasetState.ready(3) == DatasetState.ready(3)
    assert DatasetState.ready(3) != DatasetState.ready(4)


def test_fresh_manager_is_not_downloaded(app_paths):
    manager = DatasetManager(paths=app_paths)
    assert manager.coco_state == DatasetState.not_downloaded()
    assert manager.selected_source is DatasetSource.COCO
    assert not manager.is_ready


def test_existing_images_are_detected(app_paths, make_image):
    app_paths.coco_content_dir.mkdir(parents=True)
    for index in range(2):
        make_image(seed=index).save(app_paths.coco_content_dir / f"{index}.PNG")
    manager = DatasetManager(paths=app_paths)
    assert manager.coco_state == DatasetState.ready(2)


def test_empty_content_directory_is_not_downloaded(app_paths):
    app_paths.coco_content_dir.mkdir(parents=True)
    assert DatasetManager(paths=app_paths).coco_state == DatasetState.not_downloaded()


def test_download_extracts_and_limits_images(app_paths, fake_get, make_image):
    archive = make_archive(make_image, image_count=5)
    response = FakeResponse(archive)
    calls = fake_get(response)
    manager = DatasetManager(paths=app_paths, coco_url="http://example.test/val2017.zip", image_limit=3)

    states = []
    final = manager.download_coco_dataset(progress_callback=states.append)

    assert calls == {"url": "http://example.test/val2017.zip", "stream": True}
    assert final == DatasetState.ready(3)
    assert manager.coco_state == final
    assert sorted(p.name for p in app_paths.coco_content_dir.iterdir()) == [
        "000000000000.jpg", "000000000001.jpg", "000000000002.jpg"
    ]
    assert response.closed
    assert leftover_archives(app_paths) == []

    progress = [s.progress for s in states if s.status is DatasetStatus.DOWNLOADING]
    assert progress[0] == 0.0
    assert progress == sorted(progress)
    assert progress[-1] == 1.0
    assert states[-1] == DatasetState.ready(3)


def test_download_without_content_length_reports_unknown_progress(app_paths, fake_get, make_image):
    fake_get(FakeResponse(make_archive(make_image, image_count=2), send_length=False))
    manager = DatasetManager(paths=app_paths)

    states = []
    manager.download_coco_dataset(progress_callback=states.append)

    downloading = [s for s in states if s.status is DatasetStatus.DOWNLOADING]
    assert downloading[0].progress == 0.0
    assert all(s.progress is None for s in downloading[1:])
    assert manager.coco_state == DatasetState.ready(2)


def test_truncates_images_already_in_directory(app_paths, fake_get, make_image):
    app_paths.coco_content_dir.mkdir(parents=True)
    for index in range(4):
        make_image(seed=index).save(app_paths.coco_content_dir / f"zz_old_{index}.jpg")
    fake_get(FakeResponse(make_archive(make_image, image_count=3)))

    manager = DatasetManager(paths=app_paths, image_limit=4)
    assert manager.download_coco_dataset() == DatasetState.ready(4)
    assert DatasetManager.count_images(app_paths.coco_content_dir) == 4


def test_http_failure_sets_error_state(app_paths, fake_get, make_image):
    fake_get(FakeResponse(b"", status_code=503))
    manager = DatasetManager(paths=app_paths)

    state = manager.download_coco_dataset()

    assert state.status is DatasetStatus.ERROR
    assert state.message.startswith("Download failed:")
    assert "503" in state.message
    assert leftover_archives(app_paths) == []


def test_corrupt_archive_sets_error_state(app_paths, fake_get, make_image):
    fake_get(FakeResponse(b"this is not a zip file"))
    manager = DatasetManager(paths=app_paths)

    state = manager.download_coco_dataset()

    assert state.status is DatasetStatus.ERROR
    assert state.message.startswith("Download failed:")
    assert leftover_archives(app_paths) == []


def test_cancel_stops_download(app_paths, fake_get, make_image):
    fake_get(FakeResponse(make_archive(make_image, image_count=2)))
    manager = DatasetManager(paths=app_paths)

    def cancel_on_progress(state):
        if state.status is DatasetStatus.DOWNLOADING and state.progress:
            manager.cancel_download()

    state = manager.download_coco_dataset(progress_callback=cancel_on_progress)

    assert state == DatasetState.error("Download cancelled")
    assert leftover_archives(app_paths) == []


def test_background_download(app_paths, fake_get, make_image):
    fake_get(FakeResponse(make_archive(make_image, image_count=2)))
    manager = DatasetManager(paths=app_paths)

    manager.start_coco_download()
    manager.wait(timeout=30)

    assert manager.coco_state == DatasetState.ready(2)


def test_custom_directory(app_paths, content_dir, tmp_path):
    manager = DatasetManager(paths=app_paths)

    assert manager.set_custom_directory(content_dir) == DatasetState.ready(3)
    assert manager.selected_source is DatasetSource.CUSTOM
    assert manager.content_directory == content_dir
    assert manager.is_ready

    missing = manager.set_custom_directory(tmp_path / "missing")
    assert missing.status is DatasetStatus.ERROR
    assert not manager.is_ready

    manager.select_source(DatasetSource.COCO)
    assert manager.content_directory == app_paths.coco_content_dir


def test_malformed_content_length_is_unknown_size(app_paths, fake_get, make_image):
    fake_get(FakeResponse(make_archive(make_image, image_count=2), headers={"content-length": "unknown"}))
    manager = DatasetManager(paths=app_paths)

    states = []
    manager.start_coco_download(progress_callback=states.append)
    manager.wait(timeout=30)

    assert manager.coco_state == DatasetState.ready(2)
    downloading = [s for s in states if s.status is DatasetStatus.DOWNLOADING]
    assert all(s.progress is None for s in downloading[1:])


class BrokenStreamResponse(FakeResponse):
    def iter_content(self, chunk_size=1):
        yield self.payload[:10]
        raise KeyError("stream state lost")


def test_unexpected_error_sets_error_state(app_paths, fake_get, make_image):
    response = BrokenStreamResponse(make_archive(make_image, image_count=2))
    fake_get(response)
    manager = DatasetManager(paths=app_paths)

    manager.start_coco_download()
    manager.wait(timeout=30)

    assert manager.coco_state.status is DatasetStatus.ERROR
    assert manager.coco_state.message.startswith("Download failed:")
    assert "stream state lost" in manager.coco_state.message
    assert response.closed
    assert leftover_archives(app_paths) == []
