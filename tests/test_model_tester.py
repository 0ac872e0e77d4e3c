import pytest
import torch

from core.ModelExporter import export_torchscript
from core import ModelTester as tester_module
from core.ModelTester import ModelTester, ProcessingError
from core.StyleTransferModel import (TransformerNetwork, build_network, load_model_file, model_timestamp,
                                     save_model_file)
from training.configuration import Algorithm, TrainingConfiguration


@pytest.fixture
def model_file(tmp_path):
    torch.manual_seed(0)
    config = TrainingConfiguration(algorithm=Algorithm.CNN_LITE, texel_density=64)
    return save_model_file(build_network(config.algorithm), tmp_path / "StyleTransfer_test.pth", config, 100)


def test_network_keeps_size_for_multiples_of_four():
    network = TransformerNetwork(channels=(4, 8, 16), residual_blocks=1).eval()
    with torch.no_grad():
        output = network(torch.rand(1, 3, 36, 48))
    assert output.shape == (1, 3, 36, 48)
    assert output.min() >= 0 and output.max() <= 1


def test_lite_network_is_smaller():
    full = sum(p.numel() for p in build_network(Algorithm.CNN).parameters())
    lite = sum(p.numel() for p in build_network(Algorithm.CNN_LITE).parameters())
    assert lite < full


def test_model_file_round_trip_keeps_metadata(model_file):
    network, metadata = load_model_file(model_file)
    assert metadata["algorithm"] == "cnn_lite"
    assert metadata["texel_density"] == 64
    assert metadata["iterations"] == 100
    assert "model_state_dict" not in metadata
    assert not network.training


def test_load_model_file_rejects_other_checkpoints(tmp_path):
    path = tmp_path / "other.pth"
    torch.save({"weights": torch.zeros(1)}, path)
    with pytest.raises(ValueError):
        load_model_file(path)


def test_model_timestamp_is_file_name_safe():
    stamp = model_timestamp()
    assert ":" not in stamp
    assert stamp.endswith("Z")
    assert "T" in stamp


def test_load_and_process(model_file, make_image):
    tester = ModelTester(device="cpu")

    assert tester.load_model(model_file)
    assert tester.model_loaded
    assert tester.model_name == "StyleTransfer_test"
    assert tester.error is None
    assert not tester.is_loading

    tester.set_input_image(make_image(size=(50, 37)))
    output = tester.process_image()

    assert output is not None
    assert output.size == (48, 36)
    assert tester.output_image is output
    assert not tester.is_processing


def test_load_compiled_model(model_file, tmp_path, make_image):
    compiled_path = export_torchscript(model_file, tmp_path / "compiled.pt")
    assert compiled_path.exists()

    tester = ModelTester(device="cpu")
    assert tester.load_model(compiled_path)
    assert tester.model_name == "compiled"

    tester.set_input_image(make_image(size=(32, 32)))
    assert tester.process_image().size == (32, 32)


def test_unsupported_model_file(tmp_path):
    path = tmp_path / "model.mlmodel"
    path.write_bytes(b"")
    tester = ModelTester(device="cpu")

    assert not tester.load_model(path)
    assert not tester.model_loaded
    assert tester.error.startswith("Failed to load model:")


def test_corrupt_model_file(tmp_path):
    path = tmp_path / "broken.pth"
    path.write_bytes(b"garbage")
    tester = ModelTester(device="cpu")

    assert not tester.load_model(path)
    assert tester.error.startswith("Failed to load model:")


def test_process_without_model_or_input_is_noop(model_file, make_image):
    tester = ModelTester(device="cpu")
    tester.set_input_image(make_image())
    assert tester.process_image() is None

    tester = ModelTester(device="cpu")
    tester.load_model(model_file)
    assert tester.process_image() is None
    assert tester.error is None


def test_save_output(model_file, tmp_path, make_image):
    tester = ModelTester(device="cpu")
    tester.load_model(model_file)
    tester.set_input_image(make_image(size=(16, 16)))
    tester.process_image()

    output_path = tester.save_output(tmp_path / "out" / "styled.png")
    assert output_path.exists()


class FailsOnceModel:
    """Raises a RuntimeError on the first call, then returns its input"""

    def __init__(self):
        self.shapes = []

    def __call__(self, tensor):
        self.shapes.append(tuple(tensor.shape))
        if len(self.shapes) == 1:
            raise RuntimeError("out of memory")
        return tensor


def test_full_size_failure_falls_back_to_fixed_size(model_file, make_image):
    tester = ModelTester(device="cpu")
    tester.load_model(model_file)
    model = FailsOnceModel()
    tester._model = model
    tester.set_input_image(make_image(size=(50, 37)))

    output = tester.process_image()

    assert model.shapes == [(1, 3, 36, 48), (1, 3, 512, 512)]
    assert output.size == (512, 512)
    assert tester.error is None


def test_wrong_output_shape_sets_error(model_file, make_image):
    tester = ModelTester(device="cpu")
    tester.load_model(model_file)
    tester._model = lambda tensor: tensor[:, :1]
    tester.set_input_image(make_image(size=(16, 16)))

    assert tester.process_image() is None
    assert tester.output_image is None
    assert tester.error == f"Processing failed: {ProcessingError.FAILED_TO_GET_OUTPUT}"
    assert ProcessingError.FAILED_TO_GET_OUTPUT == "Failed to get output from model"
    assert not tester.is_processing


def test_input_conversion_failure_sets_error(model_file, make_image, monkeypatch):
    def broken_conversion(image, size=None):
        raise ValueError("unsupported image mode")

    monkeypatch.setattr(tester_module.ImageProcessor, "image_to_tensor", broken_conversion)
    tester = ModelTester(device="cpu")
    tester.load_model(model_file)
    tester.set_input_image(make_image(size=(16, 16)))

    assert tester.process_image() is None
    assert tester.error == "Processing failed: Failed to create input tensor from image"


def test_save_output_without_result_raises(tmp_path):
    with pytest.raises(ProcessingError):
        ModelTester(device="cpu").save_output(tmp_path / "out.png")
