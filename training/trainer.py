"""
Training logic for single-style transfer networks
"""

import math
import shutil
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional

import torch
import torch.optim as optim
from torch.utils.data import DataLoader
import logging

from core.ImageProcessor import ImageProcessor
from core.StyleTransferModel import build_network, save_model_file, model_timestamp
from training.configuration import Algorithm, TrainingConfiguration
from training.dataset import ContentImageDataset, get_val_transforms, infinite_batches, load_style_tensor
from training.losses import CombinedLoss
from utilities.AppPaths import AppPaths

logger = logging.getLogger(__name__)


class TrainingError(RuntimeError):
    FAILED_TO_SAVE_STYLE_IMAGE = "Failed to save style image to the training session directory"
    FAILED_TO_CREATE_SESSION_DIRECTORY = "Failed to create training session directory"
    FAILED_TO_CREATE_OUTPUT_DIRECTORY = "Failed to create output directory for trained model"
    NO_CONTENT_DIRECTORY = "No content directory selected"
    NO_TRAINED_MODEL = "No trained model to export"


class TrainingCancelled(Exception):
    pass


@dataclass
class TrainingReport:
    iteration: int
    max_iterations: int
    losses: Dict[str, float] = field(default_factory=dict)

    @property
    def progress(self) -> float:
        return self.iteration / self.max_iterations


class StyleTransferTrainer:
    """Trains one style transfer network per run and publishes its progress"""

    def __init__(self, paths=None, device=None, pretrained_loss=True, num_workers=0):
        """
        :param paths: AppPaths for the session and trained model directories.
        :param device: torch device; CUDA when available by default.
        :param pretrained_loss: Use ImageNet weights for the loss network.
        :param num_workers: DataLoader worker processes.
        """
        self.paths = paths or AppPaths()
        self.device = torch.device(device) if device else torch.device("cuda" if torch.cuda.is_available() else "cpu")
        self.pretrained_loss = pretrained_loss
        self.num_workers = num_workers

        self.is_training = False
        self.progress = 0.0
        self.current_iteration = 0
        self.max_iterations = 0
        self.validation_preview = None
        self.trained_model: Optional[Path] = None
        self.error: Optional[str] = None
        self.history = []

        self._cancel_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _reset(self, configuration):
        self.is_training = True
        self.progress = 0.0
        self.current_iteration = 0
        self.max_iterations = configuration.max_iterations
        self.validation_preview = None
        self.trained_model = None
        self.error = None
        self.history = []
        self._cancel_event.clear()

    def train(self,
              style_image,
              content_directory,
              configuration: TrainingConfiguration,
              validation_image=None,
              resume_from=None,
              progress_callback: Optional[Callable[[TrainingReport], None]] = None):
        """
        Train a network and write it to the trained models directory.

        :param style_image: Path, bytes or PIL image of the style.
        :param content_directory: Directory of content images.
        :param configuration: TrainingConfiguration.
        :param validation_image: Image stylized for the preview (default: first content image).
        :param resume_from: Session checkpoint to continue from.
        :param progress_callback: Called with a TrainingReport at every report interval.
        :return: Path of the trained model, or None when training failed or was cancelled.
        """
        self._reset(configuration)

        try:
            model_path = self._run(style_image, content_directory, configuration,
                                   validation_image, resume_from, progress_callback)
            self.trained_model = model_path
        except TrainingCancelled:
            logger.info(f"Training cancelled at iteration {self.current_iteration}")
            self.error = "Training cancelled"
        except Exception as e:
            logger.error(f"Training failed: {e}")
            self.error = str(e) or e.__class__.__name__
        finally:
            self.is_training = False

        return self.trained_model

    def start_training(self, *args, **kwargs):
        """Run train() on a background thread; returns the thread"""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Training already running")
            return self._thread

        configuration = kwargs.get("configuration", args[2] if len(args) > 2 else None)
        if configuration is not None:
            self._reset(configuration)
        self.is_training = True
        self._thread = threading.Thread(target=self.train, args=args, kwargs=kwargs, daemon=True)
        self._thread.start()
        return self._thread

    def wait(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def cancel_training(self):
        self._cancel_event.set()
        self.is_training = False
        self.error = "Training cancelled"

    def export_model(self, destination):
        """Copy the trained model file to a destination path or directory"""
        if self.trained_model is None:
            raise TrainingError(TrainingError.NO_TRAINED_MODEL)
        destination = Path(destination)
        if destination.is_dir():
            destination = destination / self.trained_model.name
        shutil.copy2(self.trained_model, destination)
        logger.info(f"Model exported: {destination}")
        return destination

    def _run(self, style_image, content_directory, configuration, validation_image,
             resume_from, progress_callback):
        if content_directory is None:
            raise TrainingError(TrainingError.NO_CONTENT_DIRECTORY)
        if not configuration.is_valid:
            raise TrainingError("Invalid training configuration: " + "; ".join(configuration.validation_errors()))

        run_id = model_timestamp()
        session_dir = self._session_directory(run_id)
        style_path = self._save_style_image(style_image, session_dir)

        size = configuration.texel_density
        dataset = ContentImageDataset(content_directory, size=size)
        dataloader = DataLoader(
            dataset,
            batch_size=min(configuration.batch_size, len(dataset)),
            shuffle=True,
            num_workers=self.num_workers,
            pin_memory=self.device.type == 'cuda'
        )

        network = build_network(configuration.algorithm).to(self.device)
        optimizer = optim.Adam(network.parameters(), lr=configuration.learning_rate)
        criterion = CombinedLoss(
            load_style_tensor(style_path, size).to(self.device),
            content_weight=configuration.content_weight,
            style_weight=configuration.style_weight,
            tv_weight=configuration.tv_weight,
            pretrained=self.pretrained_loss
        ).to(self.device)

        start_iteration = 0
        if resume_from is not None:
            start_iteration = self._load_checkpoint(resume_from, network, optimizer, configuration)

        validation_source = validation_image if validation_image is not None else dataset.content_images[0]
        validation_tensor = get_val_transforms(size)(ImageProcessor.load_image(validation_source)).unsqueeze(0).to(self.device)

        logger.info(f"Starting training: {configuration.algorithm.label}, {configuration.max_iterations} iterations, "
                    f"detail {size}, style strength {configuration.style_strength}, device {self.device}")
        logger.info(f"Model parameters: {sum(p.numel() for p in network.parameters()):,}")

        start_time = time.time()
        batches = infinite_batches(dataloader)
        network.train()

        for iteration in range(start_iteration + 1, configuration.max_iterations + 1):
            if self._cancel_event.is_set():
                raise TrainingCancelled()

            content = next(batches).to(self.device)

            optimizer.zero_grad()
            output = network(content)
            losses = criterion(output, content)

            if math.isfinite(losses['total'].item()):
                losses['total'].backward()
                torch.nn.utils.clip_grad_norm_(network.parameters(), max_norm=10.0)
                optimizer.step()
            else:
                logger.error(f"NaN/Inf loss detected at iteration {iteration}, optimizer step skipped")

            self.current_iteration = iteration
            self.progress = iteration / configuration.max_iterations

            if iteration % configuration.report_interval == 0 or iteration == configuration.max_iterations:
                report = TrainingReport(
                    iteration=iteration,
                    max_iterations=configuration.max_iterations,
                    losses={key: float(value) for key, value in losses.items()}
                )
                self.history.append(report.losses)
                self.validation_preview = self._preview(network, validation_tensor)
                logger.debug(f"Iteration {iteration}: total {report.losses['total']:.4f}, "
                             f"content {report.losses['content']:.4f}, style {report.losses['style']:.6f}")
                if progress_callback is not None:
                    progress_callback(report)

            if iteration % configuration.checkpoint_interval == 0:
                self._save_checkpoint(session_dir / f"checkpoint_{iteration:05d}.pth",
                                      network, optimizer, configuration, iteration)

        if self._cancel_event.is_set():
            raise TrainingCancelled()

        try:
            output_dir = self.paths.trained_models_dir
        except OSError as e:
            raise TrainingError(TrainingError.FAILED_TO_CREATE_OUTPUT_DIRECTORY) from e

        model_path = save_model_file(network, output_dir / f"StyleTransfer_{run_id}.pth",
                                     configuration, self.current_iteration)
        logger.info(f"Training completed in {time.time() - start_time:.2f} seconds")
        return model_path

    def _session_directory(self, run_id):
        try:
            session_dir = self.paths.training_sessions_dir / run_id
            session_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TrainingError(TrainingError.FAILED_TO_CREATE_SESSION_DIRECTORY) from e
        return session_dir

    def _save_style_image(self, style_image, session_dir):
        style_path = session_dir / "style_image.png"
        try:
            ImageProcessor.load_image(style_image).save(style_path, "PNG")
        except (OSError, ValueError) as e:
            raise TrainingError(TrainingError.FAILED_TO_SAVE_STYLE_IMAGE) from e
        return style_path

    def _preview(self, network, validation_tensor):
        network.eval()
        with torch.no_grad():
            preview = ImageProcessor.tensor_to_image(network(validation_tensor))
        network.train()
        return preview

    def _save_checkpoint(self, filepath, network, optimizer, configuration, iteration):
        torch.save({
            'model_state_dict': network.state_dict(),
            'optimizer_state_dict': optimizer.state_dict(),
            'algorithm': configuration.algorithm.value,
            'texel_density': configuration.texel_density,
            'style_strength': configuration.style_strength,
            'iteration': iteration,
            'history': self.history,
        }, filepath)
        logger.info(f"Checkpoint saved: {filepath}")

    def _load_checkpoint(self, filepath, network, optimizer, configuration):
        checkpoint = torch.load(filepath, map_location=self.device)

        algorithm = Algorithm.from_label(checkpoint.get('algorithm', Algorithm.CNN.value))
        if algorithm != configuration.algorithm:
            raise TrainingError(f"Checkpoint was trained with {algorithm.label}, "
                                f"not {configuration.algorithm.label}")

        network.load_state_dict(checkpoint['model_state_dict'])
        optimizer.load_state_dict(checkpoint['optimizer_state_dict'])
        self.history = list(checkpoint.get('history', []))

        iteration = int(checkpoint['iteration'])
        self.current_iteration = iteration
        self.progress = iteration / configuration.max_iterations
        logger.info(f"Checkpoint loaded: {filepath}")
        logger.info(f"Resuming from iteration {iteration}")
        return iteration


def latest_checkpoint(session_dir):
    """Most advanced checkpoint in a session directory, or None"""
    checkpoints = sorted(Path(session_dir).glob("checkpoint_*.pth"))
    return checkpoints[-1] if checkpoints else None
