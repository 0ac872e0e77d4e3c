"""
Training configuration for style transfer models
"""

from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import List

MIN_ITERATIONS, MAX_ITERATIONS = 100, 2000
MIN_TEXEL_DENSITY, MAX_TEXEL_DENSITY = 64, 512
MIN_STYLE_STRENGTH, MAX_STYLE_STRENGTH = 1, 25

# Style loss weight per unit of style strength
STYLE_WEIGHT_SCALE = 10.0


class Algorithm(Enum):
    CNN = "cnn"
    CNN_LITE = "cnn_lite"

    @property
    def label(self) -> str:
        return {
            Algorithm.CNN: "CNN (Higher Quality)",
            Algorithm.CNN_LITE: "CNN Lite (Faster, Video)",
        }[self]

    @classmethod
    def from_label(cls, label) -> "Algorithm":
        if isinstance(label, cls):
            return label
        for algorithm in cls:
            if algorithm.label == label or algorithm.value == label:
                return algorithm
        raise ValueError(f"Unknown algorithm: {label}")


@dataclass
class TrainingConfiguration:
    algorithm: Algorithm = Algorithm.CNN
    max_iterations: int = 500
    texel_density: int = 256
    style_strength: int = 10

    batch_size: int = 4
    learning_rate: float = 1e-3
    content_weight: float = 1.0
    tv_weight: float = 1e-4
    report_interval: int = 5
    checkpoint_interval: int = 50

    @property
    def style_weight(self) -> float:
        return STYLE_WEIGHT_SCALE * self.style_strength

    def validation_errors(self) -> List[str]:
        errors = []
        if self.texel_density % 4 != 0:
            errors.append(f"Detail level must be a multiple of 4 (got {self.texel_density})")
        if not MIN_TEXEL_DENSITY <= self.texel_density <= MAX_TEXEL_DENSITY:
            errors.append(f"Detail level must be between {MIN_TEXEL_DENSITY} and {MAX_TEXEL_DENSITY}")
        if not MIN_STYLE_STRENGTH <= self.style_strength <= MAX_STYLE_STRENGTH:
            errors.append(f"Style strength must be between {MIN_STYLE_STRENGTH} and {MAX_STYLE_STRENGTH}")
        if not MIN_ITERATIONS <= self.max_iterations <= MAX_ITERATIONS:
            errors.append(f"Iterations must be between {MIN_ITERATIONS} and {MAX_ITERATIONS}")
        return errors

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors()

    @staticmethod
    def snap_texel_density(value) -> int:
        """Round down to a multiple of 4 inside the allowed range."""
        value = int(value)
        value -= value % 4
        return max(MIN_TEXEL_DENSITY, min(MAX_TEXEL_DENSITY, value))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["algorithm"] = self.algorithm.value
        return data

    @classmethod
    def from_dict(cls, data) -> "TrainingConfiguration":
        known = {field.name for field in fields(cls)}
        values = {key: value for key, value in (data or {}).items() if key in known}
        if "algorithm" in values:
            values["algorithm"] = Algorithm.from_label(values["algorithm"])
        return cls(**values)
