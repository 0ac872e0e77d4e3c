"""
Content dataset management for StyleLab

Downloads the COCO val2017 archive with byte-level progress, extracts the
images flattened into the content directory and keeps a fixed number of them.
"""

import logging
import shutil
import tempfile
import threading
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import requests

from core.ImageProcessor import ImageProcessor
from utilities.AppPaths import AppPaths
from utilities.ConfigManager import DEFAULT_SETTINGS

logger = logging.getLogger(__name__)

COCO_URL = DEFAULT_SETTINGS["dataset"]["coco_url"]
DEFAULT_IMAGE_LIMIT = DEFAULT_SETTINGS["dataset"]["image_limit"]
CHUNK_SIZE = 8192


class DatasetError(RuntimeError):
    pass


class DownloadCancelled(DatasetError):
    pass


class DatasetSource(Enum):
    COCO = "COCO Dataset (subset)"
    CUSTOM = "Custom folder"


class DatasetStatus(Enum):
    NOT_DOWNLOADED = "not_downloaded"
    DOWNLOADING = "downloading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class DatasetState:
    status: DatasetStatus
    progress: Optional[float] = None
    image_count: int = 0
    message: str = ""

    @classmethod
    def not_downloaded(cls):
        return cls(DatasetStatus.NOT_DOWNLOADED)

    @classmethod
    def downloading(cls, progress=None):
        """:param progress: Fraction in [0, 1], or None when the total size is unknown."""
        return cls(DatasetStatus.DOWNLOADING, progress=progress)

    @classmethod
    def ready(cls, image_count):
        return cls(DatasetStatus.READY, image_count=image_count)

    @classmethod
    def error(cls, message):
        return cls(DatasetStatus.ERROR, message=message)

    @property
    def is_ready(self):
        return self.status is DatasetStatus.READY

    def describe(self):
        if self.status is DatasetStatus.NOT_DOWNLOADED:
            return "Not downloaded"
        if self.status is DatasetStatus.DOWNLOADING:
            if self.progress is None:
                return "Downloading..."
            return f"Downloading {int(self.progress * 100)}%"
        if self.status is DatasetStatus.READY:
            return f"{self.image_count} images ready"
        return self.message


class DatasetManager:
    """Tracks the content datasets and downloads the COCO subset"""

    def __init__(self, paths=None, coco_url=COCO_URL, image_limit=DEFAULT_IMAGE_LIMIT,
                 custom_directory=None):
        self.paths = paths or AppPaths()
        self.coco_url = coco_url
        self.image_limit = image_limit

        self.selected_source = DatasetSource.COCO
        self.coco_state = DatasetState.not_downloaded()
        self.custom_state = DatasetState.not_downloaded()
        self.custom_directory: Optional[Path] = None

        self._cancel_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.check_existing_datasets()
        if custom_directory:
            self.set_custom_directory(custom_directory)

    @property
    def coco_directory(self) -> Path:
        return self.paths.coco_content_dir

    @property
    def content_directory(self) -> Optional[Path]:
        if self.selected_source is DatasetSource.COCO:
            return self.coco_directory
        return self.custom_directory

    @property
    def state(self) -> DatasetState:
        if self.selected_source is DatasetSource.COCO:
            return self.coco_state
        return self.custom_state

    @property
    def is_ready(self) -> bool:
        return self.state.is_ready

    @staticmethod
    def count_images(directory) -> int:
        return len(ImageProcessor.list_images(directory))

    def check_existing_datasets(self):
        if self.coco_directory.is_dir():
            count = self.count_images(self.coco_directory)
            self.coco_state = DatasetState.ready(count) if count > 0 else DatasetState.not_downloaded()
        if self.custom_directory is not None:
            count = self.count_images(self.custom_directory)
            self.custom_state = (DatasetState.ready(count) if count > 0
                                 else DatasetState.error(f"No images found in {self.custom_directory}"))

    def select_source(self, source):
        self.selected_source = DatasetSource(source)

    def set_custom_directory(self, directory):
        """Use a folder of the user's own images as the content dataset"""
        self.custom_directory = Path(directory).expanduser()
        self.selected_source = DatasetSource.CUSTOM
        if not self.custom_directory.is_dir():
            self.custom_state = DatasetState.error(f"Folder not found: {self.custom_directory}")
        else:
            self.check_existing_datasets()
        return self.custom_state

    def download_coco_dataset(self, progress_callback: Optional[Callable[[DatasetState], None]] = None):
        """
        Download the COCO archive, extract it and keep the first image_limit images.

        :param progress_callback: Called with each new DatasetState.
        :return: The final DatasetState (ready or error).
        """
        self._cancel_event.clear()
        target_dir = self.coco_directory
        archive_path = None

        def publish(state):
            self.coco_state = state
            if progress_callback is not None:
                progress_callback(state)

        try:
            try:
                target_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DatasetError("Could not create directory") from e

            publish(DatasetState.downloading(0.0))
            archive_path = self._download(self.coco_url, target_dir.parent, publish)

            logger.info(f"Extracting up to {self.image_limit} images to {target_dir}")
            self.extract_images(archive_path, target_dir, self.image_limit)

            count = self.count_images(target_dir)
            publish(DatasetState.ready(count))
            logger.info(f"COCO subset ready: {count} images")
        except DownloadCancelled:
            logger.info("COCO download cancelled")
            publish(DatasetState.error("Download cancelled"))
        except (requests.RequestException, zipfile.BadZipFile, OSError, DatasetError) as e:
            logger.error(f"COCO download failed: {e}")
            publish(DatasetState.error(f"Download failed: {e}"))
        except Exception as e:
            logger.exception(f"Unexpected error during COCO download: {e}")
            publish(DatasetState.error(f"Download failed: {e}"))
        finally:
            if archive_path is not None and archive_path.exists():
                archive_path.unlink()

        return self.coco_state

    def start_coco_download(self, progress_callback=None):
        """Run download_coco_dataset() on a background thread; returns the thread"""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("COCO download already running")
            return self._thread

        self.coco_state = DatasetState.downloading(0.0)
        self._thread = threading.Thread(target=self.download_coco_dataset,
                                        args=(progress_callback,), daemon=True)
        self._thread.start()
        return self._thread

    def wait(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def cancel_download(self):
        self._cancel_event.set()

    def _download(self, url, temp_dir, publish):
        logger.info(f"Downloading {url}")
        response = requests.get(url, stream=True, timeout=30)
        response.raise_for_status()
        total_size = self._content_length(response)

        handle = tempfile.NamedTemporaryFile(dir=temp_dir, prefix="coco_", suffix=".zip", delete=False)
        archive_path = Path(handle.name)
        received = 0
        try:
            with handle:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if self._cancel_event.is_set():
                        raise DownloadCancelled("Download cancelled")
                    if not chunk:
                        continue
                    received += handle.write(chunk)
                    publish(DatasetState.downloading(min(received / total_size, 1.0) if total_size else None))
                if self._cancel_event.is_set():
                    raise DownloadCancelled("Download cancelled")
        except BaseException:
            archive_path.unlink()
            raise
        finally:
            response.close()

        logger.info(f"Downloaded {received:,} bytes")
        return archive_path

    @staticmethod
    def _content_length(response):
        """Declared archive size in bytes, or None when missing or malformed"""
        try:
            total_size = int(response.headers.get("content-length", ""))
        except ValueError:
            return None
        return total_size if total_size > 0 else None

    @staticmethod
    def extract_images(archive_path, target_dir, limit):
        """
        Extract image members flattened into target_dir, then truncate the directory to limit images.

        :return: Number of images in target_dir afterwards.
        """
        target_dir = Path(target_dir)
        target_dir.mkdir(parents=True, exist_ok=True)

        with zipfile.ZipFile(archive_path) as archive:
            members = sorted(
                (info for info in archive.infolist()
                 if not info.is_dir() and ImageProcessor.is_image_file(info.filename)),
                key=lambda info: info.filename
            )
            extracted = 0
            for info in members:
                if extracted >= limit:
                    break
                # Junk paths: only the base name is kept
                name = Path(info.filename).name
                if name.startswith("."):
                    continue
                with archive.open(info) as source, open(target_dir / name, "wb") as destination:
                    shutil.copyfileobj(source, destination)
                extracted += 1

        return DatasetManager.limit_images(target_dir, limit)

    @staticmethod
    def limit_images(directory, limit):
        images = ImageProcessor.list_images(directory)
        for image_path in images[limit:]:
            image_path.unlink()
        return min(len(images), limit)
