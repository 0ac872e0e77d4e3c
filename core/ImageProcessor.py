import io
import logging
from pathlib import Path

import torchvision.transforms as transforms
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png")


class ImageProcessor:
    @staticmethod
    def load_image(image_path_or_data):
        """
        Open an image from a path, raw bytes, a file-like object or a PIL image.
        :param image_path_or_data: Image source.
        :return: RGB PIL Image object.
        """
        try:
            if isinstance(image_path_or_data, Image.Image):
                img = image_path_or_data
            elif isinstance(image_path_or_data, (str, Path)):
                img = Image.open(image_path_or_data)
            elif isinstance(image_path_or_data, (bytes, bytearray)):
                img = Image.open(io.BytesIO(image_path_or_data))
            elif hasattr(image_path_or_data, "read"):
                img = Image.open(image_path_or_data)
            else:
                raise ValueError("Invalid input type for image")
            return img.convert("RGB")
        except (OSError, UnidentifiedImageError) as e:
            logger.error(f"Failed to open image: {e}")
            raise ValueError(f"Could not read image: {e}") from e

    @staticmethod
    def is_image_file(path):
        return Path(path).suffix.lower() in IMAGE_EXTENSIONS

    @staticmethod
    def list_images(directory):
        """Sorted image files directly inside a directory."""
        directory = Path(directory)
        if not directory.is_dir():
            return []
        return sorted(
            path for path in directory.iterdir()
            if path.is_file() and ImageProcessor.is_image_file(path)
        )

    @staticmethod
    def round_to_multiple(size, multiple=4):
        """
        Round both dimensions of (width, height) down to a multiple, never below the multiple itself.
        """
        width, height = size
        return (max(multiple, width - width % multiple), max(multiple, height - height % multiple))

    @staticmethod
    def image_to_tensor(image, size=None):
        """
        Convert a PIL image to a 1xCxHxW float tensor in [0, 1].
        :param size: Optional (width, height) to resize to first.
        """
        if size is not None:
            image = image.resize(size, Image.Resampling.LANCZOS)
        return transforms.ToTensor()(image).unsqueeze(0)

    @staticmethod
    def tensor_to_image(tensor):
        """Convert a CxHxW or 1xCxHxW tensor to a PIL image."""
        if tensor.dim() == 4:
            tensor = tensor.squeeze(0)
        tensor = tensor.detach().clamp(0, 1).cpu()
        return transforms.ToPILImage()(tensor)

    @staticmethod
    def save_image(image, output_path):
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        image.save(output_path)
        logger.info(f"Image saved: {output_path}")
        return output_path

    @staticmethod
    def image_bytes(image, format="PNG"):
        buffer = io.BytesIO()
        image.save(buffer, format=format)
        return buffer.getvalue()
