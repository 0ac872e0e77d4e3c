"""
Export trained models to runtime formats

TorchScript (.pt) loads anywhere PyTorch runs; Core ML (.mlpackage) targets
Apple devices and needs the optional coremltools dependency.
"""

import logging
from pathlib import Path

import torch

from core.StyleTransferModel import compile_model, load_model_file

logger = logging.getLogger(__name__)

COREML_INPUT_NAME = "image"
COREML_OUTPUT_NAME = "stylizedImage"


def export_torchscript(model_path, destination=None, size=None):
    """
    Compile a ``.pth`` model file to TorchScript.

    :param model_path: Trained model file.
    :param destination: Output path (default: next to the model with a .pt suffix).
    :param size: Example input side used for tracing (default: the model's training size).
    :return: Path to the compiled model.
    """
    model_path = Path(model_path)
    destination = Path(destination) if destination else model_path.with_suffix(".pt")

    network, metadata = load_model_file(model_path)
    compiled = compile_model(network, size or metadata.get('texel_density', 256))
    destination.parent.mkdir(parents=True, exist_ok=True)
    compiled.save(str(destination))

    logger.info(f"TorchScript model saved: {destination}")
    return destination


def export_coreml(model_path, destination=None, size=512):
    """
    Convert a ``.pth`` model file to a Core ML ML program.

    The model takes a ``size`` x ``size`` RGB image named "image" and returns
    an RGB image named "stylizedImage".
    """
    try:
        import coremltools as ct
    except ImportError as e:
        raise RuntimeError("Core ML export requires coremltools (pip install 'stylelab[coreml]')") from e

    model_path = Path(model_path)
    destination = Path(destination) if destination else model_path.with_suffix(".mlpackage")

    network, metadata = load_model_file(model_path)
    traced = compile_model(_ScaledOutput(network).eval(), size)

    model = ct.convert(
        traced,
        inputs=[ct.ImageType(name=COREML_INPUT_NAME, shape=(1, 3, size, size),
                             scale=1 / 255.0, color_layout=ct.colorlayout.RGB)],
        outputs=[ct.ImageType(name=COREML_OUTPUT_NAME, color_layout=ct.colorlayout.RGB)],
        convert_to="mlprogram",
    )
    model.short_description = f"Style transfer ({metadata.get('algorithm', 'cnn')}, " \
                              f"strength {metadata.get('style_strength', '?')})"
    model.save(str(destination))

    logger.info(f"Core ML model saved: {destination}")
    return destination


class _ScaledOutput(torch.nn.Module):
    """Maps the network's [0, 1] output to the [0, 255] range Core ML images use"""

    def __init__(self, network):
        super().__init__()
        self.network = network

    def forward(self, image):
        return self.network(image) * 255.0
