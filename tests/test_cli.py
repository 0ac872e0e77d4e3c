import json
import logging

import pytest

from core.StyleTransferModel import build_network, save_model_file
from interface import CLIHandler
from training.configuration import Algorithm, TrainingConfiguration


@pytest.fixture
def home(tmp_path):
    return tmp_path / "home"


@pytest.fixture
def trained_model(home):
    config = TrainingConfiguration(algorithm=Algorithm.CNN_LITE, texel_density=64)
    return save_model_file(build_network(config.algorithm), home / "TrainedModels" / "StyleTransfer_cli.pth",
                           config, 100)


def test_models_without_any(home, capsys):
    assert CLIHandler.main(["--home", str(home), "models"]) == 0
    assert "No trained models" in capsys.readouterr().out


def test_models_lists_files(home, trained_model, capsys):
    assert CLIHandler.main(["--home", str(home), "models"]) == 0
    assert "StyleTransfer_cli.pth" in capsys.readouterr().out


def test_dataset_status(home, capsys):
    assert CLIHandler.main(["--home", str(home), "dataset", "status"]) == 0
    assert "Not downloaded" in capsys.readouterr().out
    assert json.loads((home / "config.json").read_text())["dataset"]["image_limit"] == 600


def test_stylize_with_newest_model(home, trained_model, tmp_path, make_image):
    input_path = tmp_path / "input.jpg"
    make_image(size=(40, 28)).save(input_path)
    output_path = tmp_path / "styled.png"

    code = CLIHandler.main(["--home", str(home), "stylize", "--input", str(input_path),
                            "--output", str(output_path), "--device", "cpu"])

    assert code == 0
    assert output_path.exists()


def test_stylize_without_models(home, tmp_path, make_image):
    input_path = tmp_path / "input.jpg"
    make_image().save(input_path)
    code = CLIHandler.main(["--home", str(home), "stylize", "--input", str(input_path),
                            "--output", str(tmp_path / "out.png")])
    assert code == 1


def test_stylize_missing_input(home, trained_model, tmp_path):
    code = CLIHandler.main(["--home", str(home), "stylize", "--model", str(trained_model),
                            "--input", str(tmp_path / "missing.jpg"), "--output", str(tmp_path / "out.png")])
    assert code == 1


def test_train_rejects_invalid_strength(home, style_image, content_dir):
    code = CLIHandler.main(["--home", str(home), "train", "--style", str(style_image),
                            "--content-dir", str(content_dir), "--strength", "30"])
    assert code == 1


def test_train_rejects_missing_style(home, tmp_path, content_dir):
    code = CLIHandler.main(["--home", str(home), "train", "--style", str(tmp_path / "missing.png"),
                            "--content-dir", str(content_dir)])
    assert code == 1


def test_train_requires_content(home, style_image):
    code = CLIHandler.main(["--home", str(home), "train", "--style", str(style_image)])
    assert code == 1


def test_export_torchscript(home, trained_model, tmp_path):
    destination = tmp_path / "model.pt"
    code = CLIHandler.main(["--home", str(home), "export", "--model", str(trained_model),
                            "--output", str(destination)])
    assert code == 0
    assert destination.exists()


def test_export_missing_model(home, tmp_path):
    code = CLIHandler.main(["--home", str(home), "export", "--model", str(tmp_path / "missing.pth")])
    assert code == 1


def test_resolve_checkpoint(tmp_path):
    (tmp_path / "checkpoint_00050.pth").write_bytes(b"")
    (tmp_path / "checkpoint_00100.pth").write_bytes(b"")
    assert CLIHandler.resolve_checkpoint(tmp_path).name == "checkpoint_00100.pth"
    assert CLIHandler.resolve_checkpoint(tmp_path / "checkpoint_00050.pth").name == "checkpoint_00050.pth"

    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(FileNotFoundError):
        CLIHandler.resolve_checkpoint(empty)


def test_log_file_follows_home(home, tmp_path):
    assert CLIHandler.main(["--home", str(home), "models"]) == 0
    assert (home / "logs" / "cli.log").exists()

    other_home = tmp_path / "other"
    assert CLIHandler.main(["--home", str(other_home), "models"]) == 0
    file_handlers = [h for h in CLIHandler.logger.handlers if isinstance(h, logging.FileHandler)]
    assert [h.baseFilename for h in file_handlers] == [str(other_home / "logs" / "cli.log")]
