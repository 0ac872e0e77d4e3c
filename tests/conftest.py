import random

import pytest
from PIL import Image

from utilities.AppPaths import AppPaths


def _make_image(size=(80, 64), seed=0):
    rng = random.Random(seed)
    image = Image.new("RGB", size, color=(rng.randint(0, 255), rng.randint(0, 255), rng.randint(0, 255)))
    # A few blocks so the images are not flat
    for _ in range(4):
        x, y = rng.randint(0, size[0] - 10), rng.randint(0, size[1] - 10)
        color = (rng.randint(0, 255), rng.randint(0, 255), rng.randint(0, 255))
        image.paste(color, (x, y, x + 10, y + 10))
    return image


@pytest.fixture(scope="session")
def make_image():
    return _make_image


@pytest.fixture
def app_paths(tmp_path):
    return AppPaths(tmp_path / "home")


@pytest.fixture
def content_dir(tmp_path):
    directory = tmp_path / "content"
    directory.mkdir()
    for index in range(3):
        _make_image(seed=index).save(directory / f"content_{index}.jpg")
    (directory / "notes.txt").write_text("not an image")
    return directory


@pytest.fixture
def style_image(tmp_path):
    path = tmp_path / "style.png"
    _make_image(size=(96, 96), seed=42).save(path)
    return path
