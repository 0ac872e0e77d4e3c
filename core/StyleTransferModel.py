import logging
from datetime import datetime, timezone
from pathlib import Path

import torch
import torch.nn as nn
import torch.nn.functional as F

from training.configuration import Algorithm

logger = logging.getLogger(__name__)

MODEL_FORMAT_VERSION = 1

# Network widths and residual depth per algorithm
ARCHITECTURES = {
    Algorithm.CNN: {"channels": (32, 64, 128), "residual_blocks": 5},
    Algorithm.CNN_LITE: {"channels": (16, 32, 64), "residual_blocks": 3},
}


class ResidualBlock(nn.Module):
    """Residual block for transformation network"""

    def __init__(self, channels):
        super(ResidualBlock, self).__init__()
        self.conv1 = nn.Conv2d(channels, channels, 3, 1, 1)
        self.norm1 = nn.InstanceNorm2d(channels, affine=True)
        self.conv2 = nn.Conv2d(channels, channels, 3, 1, 1)
        self.norm2 = nn.InstanceNorm2d(channels, affine=True)

    def forward(self, x):
        residual = x
        out = F.relu(self.norm1(self.conv1(x)))
        out = self.norm2(self.conv2(out))
        return out + residual


class TransformerNetwork(nn.Module):
    """
    Feed-forward image transformation network trained for a single style.

    Two stride-2 convolutions downsample by 4 and two transposed convolutions
    upsample back, so inputs whose sides are multiples of 4 keep their size.
    """

    def __init__(self, channels=(32, 64, 128), residual_blocks=5):
        super(TransformerNetwork, self).__init__()
        c1, c2, c3 = channels

        self.encoder = nn.Sequential(
            nn.Conv2d(3, c1, 9, 1, 4),
            nn.InstanceNorm2d(c1, affine=True),
            nn.ReLU(),
            nn.Conv2d(c1, c2, 3, 2, 1),
            nn.InstanceNorm2d(c2, affine=True),
            nn.ReLU(),
            nn.Conv2d(c2, c3, 3, 2, 1),
            nn.InstanceNorm2d(c3, affine=True),
            nn.ReLU(),
        )

        self.residuals = nn.Sequential(*[ResidualBlock(c3) for _ in range(residual_blocks)])

        self.decoder = nn.Sequential(
            nn.ConvTranspose2d(c3, c2, 3, 2, 1, 1),
            nn.InstanceNorm2d(c2, affine=True),
            nn.ReLU(),
            nn.ConvTranspose2d(c2, c1, 3, 2, 1, 1),
            nn.InstanceNorm2d(c1, affine=True),
            nn.ReLU(),
            nn.Conv2d(c1, 3, 9, 1, 4),
        )

    def forward(self, content):
        x = self.encoder(content)
        x = self.residuals(x)
        x = self.decoder(x)
        return torch.sigmoid(x)


def build_network(algorithm):
    algorithm = Algorithm.from_label(algorithm)
    return TransformerNetwork(**ARCHITECTURES[algorithm])


def model_timestamp(now=None):
    """ISO 8601 UTC timestamp that is safe to use in file names."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%SZ").replace(":", "-")


def save_model_file(network, path, configuration, iterations):
    """
    Write a trained network together with the settings it was trained with.

    :param network: Trained TransformerNetwork.
    :param path: Destination ``.pth`` path.
    :param configuration: TrainingConfiguration used for training.
    :param iterations: Number of optimizer steps completed.
    :return: Path to the written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    torch.save({
        'format_version': MODEL_FORMAT_VERSION,
        'model_state_dict': network.state_dict(),
        'algorithm': configuration.algorithm.value,
        'texel_density': configuration.texel_density,
        'style_strength': configuration.style_strength,
        'iterations': iterations,
        'created_at': datetime.now(timezone.utc).isoformat(),
    }, path)
    logger.info(f"Model saved: {path}")
    return path


def load_model_file(path, device='cpu'):
    """
    Rebuild a network from a ``.pth`` model file.

    :return: (network in eval mode, metadata dict without the weights)
    """
    checkpoint = torch.load(path, map_location=device)
    if not isinstance(checkpoint, dict) or 'model_state_dict' not in checkpoint:
        raise ValueError(f"{Path(path).name} is not a style transfer model file")

    network = build_network(checkpoint.get('algorithm', Algorithm.CNN.value))
    network.load_state_dict(checkpoint['model_state_dict'])
    network.to(device).eval()

    metadata = {key: value for key, value in checkpoint.items()
                if key not in ('model_state_dict', 'optimizer_state_dict')}
    return network, metadata


def compile_model(network, example_size=256):
    """
    Trace a network into TorchScript, the runtime-loadable form of a model.

    :param network: Network in eval mode.
    :param example_size: Side of the square example input used for tracing.
    """
    network.eval()
    device = next(network.parameters()).device
    example = torch.rand(1, 3, example_size, example_size, device=device)
    with torch.no_grad():
        compiled = torch.jit.trace(network, example)
    return compiled
