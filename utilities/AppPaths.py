import os
import sys
from pathlib import Path

APP_NAME = "StyleLab"


class AppPaths:
    """Persisted-file layout under the application-support directory."""

    def __init__(self, base_dir=None):
        """
        :param base_dir: Root directory override. Defaults to STYLELAB_HOME, then the
                         platform application-support directory.
        """
        self.base_dir = Path(base_dir) if base_dir else self.default_base_dir()

    @staticmethod
    def default_base_dir() -> Path:
        override = os.getenv("STYLELAB_HOME")
        if override:
            return Path(override).expanduser()

        home = Path.home()
        if sys.platform == "darwin":
            return home / "Library" / "Application Support" / APP_NAME

        xdg_data = os.getenv("XDG_DATA_HOME")
        if xdg_data:
            return Path(xdg_data) / APP_NAME
        return home / ".local" / "share" / APP_NAME

    @property
    def coco_content_dir(self) -> Path:
        return self.base_dir / "COCOContent"

    @property
    def trained_models_dir(self) -> Path:
        return self._ensure(self.base_dir / "TrainedModels")

    @property
    def training_sessions_dir(self) -> Path:
        return self._ensure(self.base_dir / "TrainingSessions")

    @property
    def logs_dir(self) -> Path:
        return self._ensure(self.base_dir / "logs")

    @property
    def config_file(self) -> Path:
        return self.base_dir / "config.json"

    def list_trained_models(self):
        """Trained model files, newest first."""
        models = [
            path for path in self.trained_models_dir.iterdir()
            if path.suffix in (".pth", ".pt")
        ]
        return sorted(models, key=lambda path: path.stat().st_mtime, reverse=True)

    @staticmethod
    def _ensure(directory: Path) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        return directory
