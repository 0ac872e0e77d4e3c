import logging
import threading
from pathlib import Path
from typing import Optional

import torch

from core.ImageProcessor import ImageProcessor
from core.StyleTransferModel import compile_model, load_model_file

logger = logging.getLogger(__name__)

MODEL_EXTENSIONS = (".pth", ".pt")
FALLBACK_SIZE = (512, 512)


class ProcessingError(RuntimeError):
    FAILED_TO_CREATE_INPUT = "Failed to create input tensor from image"
    FAILED_TO_GET_OUTPUT = "Failed to get output from model"


class ModelTester:
    """Loads a trained model and runs it against test images"""

    def __init__(self, device=None):
        self.device = torch.device(device) if device else torch.device("cuda" if torch.cuda.is_available() else "cpu")

        self.is_loading = False
        self.model_loaded = False
        self.model_name: Optional[str] = None
        self.model_path: Optional[Path] = None
        self.metadata = {}
        self.error: Optional[str] = None
        self.input_image = None
        self.output_image = None
        self.is_processing = False

        self._model = None
        self._lock = threading.Lock()

    def load_model(self, path):
        """
        Load a model file. ``.pth`` files are compiled to TorchScript on load,
        ``.pt`` files are already compiled.

        :return: True when the model is ready.
        """
        path = Path(path)
        self.is_loading = True
        self.error = None
        self.model_loaded = False

        try:
            if path.suffix not in MODEL_EXTENSIONS:
                raise ValueError(f"Unsupported model file type '{path.suffix}'")

            if path.suffix == ".pth":
                network, metadata = load_model_file(path, self.device)
                model = compile_model(network, metadata.get('texel_density', 256))
            else:
                model = torch.jit.load(str(path), map_location=self.device)
                model.eval()
                metadata = {}

            with self._lock:
                self._model = model
                self.metadata = metadata
                self.model_path = path
                self.model_name = path.stem
                self.model_loaded = True
            logger.info(f"Model loaded: {path}")
        except Exception as e:
            logger.error(f"Failed to load model {path}: {e}")
            self.error = f"Failed to load model: {e}"
        finally:
            self.is_loading = False

        return self.model_loaded

    def set_input_image(self, image):
        self.input_image = ImageProcessor.load_image(image)
        self.output_image = None
        return self.input_image

    def process_image(self):
        """
        Stylize the input image with the loaded model.

        :return: Output PIL image, or None when nothing was produced.
        """
        if self._model is None or self.input_image is None:
            return None

        self.is_processing = True
        self.error = None
        self.output_image = None

        try:
            try:
                output = self._run(ImageProcessor.round_to_multiple(self.input_image.size))
            except ProcessingError:
                raise
            except RuntimeError as e:
                logger.warning(f"Full-size inference failed ({e}), retrying at {FALLBACK_SIZE}")
                output = self._run(FALLBACK_SIZE)
            self.output_image = output
        except Exception as e:
            logger.error(f"Processing failed: {e}")
            self.error = f"Processing failed: {e}"
        finally:
            self.is_processing = False

        return self.output_image

    def _run(self, size):
        try:
            tensor = ImageProcessor.image_to_tensor(self.input_image, size).to(self.device)
        except (ValueError, OSError) as e:
            raise ProcessingError(ProcessingError.FAILED_TO_CREATE_INPUT) from e

        with self._lock, torch.no_grad():
            output = self._model(tensor)

        if not isinstance(output, torch.Tensor) or output.dim() != 4 or output.size(1) != 3:
            raise ProcessingError(ProcessingError.FAILED_TO_GET_OUTPUT)
        return ImageProcessor.tensor_to_image(output)

    def save_output(self, output_path):
        if self.output_image is None:
            raise ProcessingError(ProcessingError.FAILED_TO_GET_OUTPUT)
        return ImageProcessor.save_image(self.output_image, output_path)
