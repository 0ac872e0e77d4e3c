import argparse
import logging
import subprocess
import sys
from pathlib import Path

from tqdm import tqdm

from core.ImageProcessor import ImageProcessor
from core.ModelExporter import export_coreml, export_torchscript
from core.ModelTester import ModelTester
from data.DatasetManager import DatasetManager, DatasetStatus
from training.configuration import (Algorithm, TrainingConfiguration, MIN_ITERATIONS, MAX_ITERATIONS)
from training.trainer import StyleTransferTrainer, latest_checkpoint
from utilities.AppPaths import AppPaths
from utilities.ConfigManager import ConfigManager
from utilities.Logger import Logger

logger = Logger.setup_logger(logger_name="cli", log_level=logging.INFO)


def build_parser():
    parser = argparse.ArgumentParser(prog="stylelab", description="StyleLab: train and test style transfer models.")
    parser.add_argument("--home", help="Application data directory (default: STYLELAB_HOME or the platform default)")
    parser.add_argument("--verbose", action="store_true", help="Log debug messages")
    commands = parser.add_subparsers(dest="command", required=True)

    dataset = commands.add_parser("dataset", help="Manage the content dataset")
    dataset_commands = dataset.add_subparsers(dest="dataset_command", required=True)
    dataset_commands.add_parser("status", help="Show content dataset status")
    download = dataset_commands.add_parser("download", help="Download the COCO content subset")
    download.add_argument("--limit", type=int, help="Number of images to keep")
    download.add_argument("--url", help="Archive URL")

    train = commands.add_parser("train", help="Train a style transfer model")
    train.add_argument("--style", required=True, help="Path to the style image")
    train.add_argument("--content-dir", help="Content image directory (default: the COCO subset)")
    train.add_argument("--algorithm", choices=[a.value for a in Algorithm], help="Network architecture")
    train.add_argument("--iterations", type=int, help=f"Training iterations ({MIN_ITERATIONS}-{MAX_ITERATIONS})")
    train.add_argument("--detail", type=int, help="Detail level / texel density (64-512, multiple of 4)")
    train.add_argument("--strength", type=int, help="Style strength (1-25)")
    train.add_argument("--batch-size", type=int, help="Batch size")
    train.add_argument("--validation-image", help="Image stylized for the preview")
    train.add_argument("--preview", help="Save the final validation preview to this path")
    train.add_argument("--resume", help="Session checkpoint or session directory to resume from")
    train.add_argument("--device", help="Device to use (cuda/cpu, default: auto)")

    stylize = commands.add_parser("stylize", help="Apply a trained model to an image")
    stylize.add_argument("--model", help="Model file (.pth or .pt, default: newest trained model)")
    stylize.add_argument("--input", required=True, help="Path to the input image")
    stylize.add_argument("--output", required=True, help="Path to save the stylized image")
    stylize.add_argument("--device", help="Device to use (cuda/cpu, default: auto)")

    commands.add_parser("models", help="List trained models")
    commands.add_parser("ui", help="Open the training and testing UI in the browser")

    export = commands.add_parser("export", help="Export a trained model")
    export.add_argument("--model", required=True, help="Model file (.pth)")
    export.add_argument("--format", choices=["torchscript", "coreml"], default="torchscript")
    export.add_argument("--output", help="Destination path")
    export.add_argument("--size", type=int, default=512, help="Core ML input size")

    return parser


def run_dataset(args, paths, settings):
    dataset_settings = settings["dataset"]
    manager = DatasetManager(
        paths=paths,
        coco_url=args.url if getattr(args, "url", None) else dataset_settings["coco_url"],
        image_limit=args.limit if getattr(args, "limit", None) else dataset_settings["image_limit"],
        custom_directory=dataset_settings.get("custom_directory")
    )

    if args.dataset_command == "status":
        print(f"COCO ({manager.coco_directory}): {manager.coco_state.describe()}")
        if manager.custom_directory is not None:
            print(f"Custom ({manager.custom_directory}): {manager.custom_state.describe()}")
        return 0

    with tqdm(total=100, desc="val2017.zip", unit="%") as pbar:
        def on_progress(state):
            if state.status is DatasetStatus.DOWNLOADING and state.progress is not None:
                pbar.update(int(state.progress * 100) - pbar.n)

        state = manager.download_coco_dataset(progress_callback=on_progress)

    if not state.is_ready:
        logger.error(state.describe())
        return 1
    logger.info(f"Content dataset: {state.describe()}")
    return 0


def resolve_checkpoint(resume):
    resume = Path(resume)
    if resume.is_dir():
        checkpoint = latest_checkpoint(resume)
        if checkpoint is None:
            raise FileNotFoundError(f"No checkpoints in {resume}")
        return checkpoint
    return resume


def run_train(args, paths, settings):
    configuration = TrainingConfiguration.from_dict(settings["training"])
    overrides = {
        "algorithm": args.algorithm,
        "max_iterations": args.iterations,
        "texel_density": args.detail,
        "style_strength": args.strength,
        "batch_size": args.batch_size,
    }
    configuration = TrainingConfiguration.from_dict({
        **configuration.to_dict(),
        **{key: value for key, value in overrides.items() if value is not None}
    })

    if not configuration.is_valid:
        for problem in configuration.validation_errors():
            logger.error(problem)
        return 1

    if not Path(args.style).exists():
        logger.error(f"Style image '{args.style}' does not exist.")
        return 1

    if args.content_dir:
        content_dir = Path(args.content_dir)
    else:
        manager = DatasetManager(paths=paths)
        if not manager.coco_state.is_ready:
            logger.error("Content dataset not downloaded. Run 'stylelab dataset download' or pass --content-dir.")
            return 1
        content_dir = manager.content_directory

    ConfigManager.update_section(paths.config_file, "training", configuration.to_dict())

    trainer = StyleTransferTrainer(paths=paths, device=args.device)
    with tqdm(total=configuration.max_iterations, desc="Training", unit="it") as pbar:
        def on_report(report):
            pbar.update(report.iteration - pbar.n)
            pbar.set_postfix({
                'Loss': f"{report.losses['total']:.4f}",
                'Style': f"{report.losses['style']:.6f}",
            })

        model_path = trainer.train(
            style_image=args.style,
            content_directory=content_dir,
            configuration=configuration,
            validation_image=args.validation_image,
            resume_from=resolve_checkpoint(args.resume) if args.resume else None,
            progress_callback=on_report
        )

    if model_path is None:
        logger.error(f"Training failed: {trainer.error}")
        return 1

    if args.preview and trainer.validation_preview is not None:
        ImageProcessor.save_image(trainer.validation_preview, args.preview)
    logger.info(f"Trained model saved to: {model_path}")
    return 0


def run_stylize(args, paths):
    if args.model:
        model_path = Path(args.model)
    else:
        models = paths.list_trained_models()
        if not models:
            logger.error("No trained models found. Train one first or pass --model.")
            return 1
        model_path = models[0]

    if not Path(args.input).exists():
        logger.error(f"Input image '{args.input}' does not exist.")
        return 1

    tester = ModelTester(device=args.device)
    if not tester.load_model(model_path):
        logger.error(tester.error)
        return 1

    try:
        tester.set_input_image(args.input)
    except ValueError as e:
        logger.error(f"Error loading input image: {e}")
        return 1

    if tester.process_image() is None:
        logger.error(tester.error)
        return 1

    tester.save_output(args.output)
    logger.info(f"Styled image saved to: {args.output}")
    return 0


def run_models(paths):
    models = paths.list_trained_models()
    if not models:
        print("No trained models")
    for model_path in models:
        print(f"{model_path.name}\t{model_path.stat().st_size / 1024 / 1024:.1f} MB")
    return 0


def run_ui():
    ui_script = Path(__file__).with_name("UIHandler.py")
    return subprocess.call([sys.executable, "-m", "streamlit", "run", str(ui_script)])


def run_export(args):
    if args.format == "coreml":
        destination = export_coreml(args.model, args.output, size=args.size)
    else:
        destination = export_torchscript(args.model, args.output)
    logger.info(f"Exported model to: {destination}")
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)

    paths = AppPaths(args.home)

    if args.verbose:
        Logger.set_level_all(logging.DEBUG)
    Logger.set_log_file(logger, "cli.log", paths.logs_dir)
    Logger.attach_library_loggers(logger)

    settings = ConfigManager.load_settings(paths.config_file)

    try:
        if args.command == "dataset":
            return run_dataset(args, paths, settings)
        if args.command == "train":
            return run_train(args, paths, settings)
        if args.command == "stylize":
            return run_stylize(args, paths)
        if args.command == "models":
            return run_models(paths)
        if args.command == "ui":
            return run_ui()
        return run_export(args)
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 130
    except (OSError, ValueError, RuntimeError) as e:
        logger.error(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
