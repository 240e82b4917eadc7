"""
Unit tests for the onnxruntime detection session.
"""
import logging
from unittest.mock import MagicMock

import numpy as np
import pytest

from shade.domains.detection.entities.detection import BoxesFound, EmptyDetection
from shade.domains.detection.models import DetectorFactory
from shade.domains.detection.models.onnx_detector import OnnxDetector

from conftest import build_model_output, solid_frame


def _tensor_meta(name, shape):
    meta = MagicMock()
    meta.name = name
    meta.shape = shape
    return meta


@pytest.fixture
def mock_ort_session(mocker):
    """Mocks onnxruntime.InferenceSession with an NHWC 320x320 input and [1, 20, 6] output."""
    session = MagicMock()
    session.get_inputs.return_value = [_tensor_meta("images", [1, 320, 320, 3])]
    session.get_outputs.return_value = [_tensor_meta("output0", [1, 20, 6])]
    session.run.return_value = [build_model_output([])]

    mocker.patch("shade.domains.detection.models.onnx_detector.ort.get_available_providers",
                 return_value=["CPUExecutionProvider"])
    constructor = mocker.patch("shade.domains.detection.models.onnx_detector.ort.InferenceSession",
                               return_value=session)
    return session, constructor


@pytest.fixture
def detector(mock_ort_session):
    session_detector = OnnxDetector(model_path="weights/shade_small.onnx", use_gpu=False)
    assert session_detector.setup(0.6)
    return session_detector


def test_setup_reads_tensor_and_output_geometry(detector, mock_ort_session):
    _, constructor = mock_ort_session

    assert detector.is_ready()
    assert detector.tensor_width == 320
    assert detector.tensor_height == 320
    assert detector.max_candidates == 20
    assert detector.num_channels == 6
    assert detector.get_confidence_threshold() == pytest.approx(0.6)
    assert constructor.call_args.kwargs["providers"] == ["CPUExecutionProvider"]
    assert constructor.call_args.kwargs["sess_options"].intra_op_num_threads == 4


def test_setup_fails_when_model_cannot_load(mocker):
    mocker.patch("shade.domains.detection.models.onnx_detector.ort.get_available_providers",
                 return_value=["CPUExecutionProvider"])
    mocker.patch("shade.domains.detection.models.onnx_detector.ort.InferenceSession",
                 side_effect=RuntimeError("no such file"))

    session_detector = OnnxDetector(model_path="missing.onnx", use_gpu=False)

    assert session_detector.setup(0.5) is False
    assert not session_detector.is_ready()
    assert session_detector.detect(solid_frame(32, 32)) is None


@pytest.mark.parametrize("output_shape", [[1, 20, 5], [1, 0, 6], [1, "num_dets", 6], [20, 6]])
def test_setup_rejects_unusable_output_shapes(mock_ort_session, output_shape, caplog):
    session, _ = mock_ort_session
    session.get_outputs.return_value = [_tensor_meta("output0", output_shape)]

    session_detector = OnnxDetector(model_path="weights/shade_small.onnx", use_gpu=False)

    with caplog.at_level(logging.ERROR, logger="shade.domains.detection.models.onnx_detector"):
        assert session_detector.setup(0.5) is False
    assert not session_detector.is_ready()
    assert "ModelSetupError" in caplog.text


def test_gpu_failure_falls_back_to_cpu(mocker):
    session = MagicMock()
    session.get_inputs.return_value = [_tensor_meta("images", [1, 416, 416, 3])]
    session.get_outputs.return_value = [_tensor_meta("output0", [1, 300, 6])]
    mocker.patch("shade.domains.detection.models.onnx_detector.ort.get_available_providers",
                 return_value=["CUDAExecutionProvider", "CPUExecutionProvider"])
    constructor = mocker.patch("shade.domains.detection.models.onnx_detector.ort.InferenceSession",
                               side_effect=[RuntimeError("CUDA init failed"), session])

    session_detector = OnnxDetector(model_path="weights/shade_large.onnx", use_gpu=True)

    assert session_detector.setup(0.6)
    assert session_detector.providers == ["CPUExecutionProvider"]
    assert constructor.call_count == 2


def test_detect_returns_boxes_found_with_frame(detector, mock_ort_session):
    session, _ = mock_ort_session
    session.run.return_value = [build_model_output([(0.1, 0.1, 0.5, 0.5, 0.9, 0)])]
    frame = solid_frame(640, 480, (200, 100, 50))

    outcome = detector.detect(frame)

    assert isinstance(outcome, BoxesFound)
    assert outcome.frame is frame
    assert len(outcome.boxes) == 1
    assert outcome.boxes[0].to_xyxy() == pytest.approx((0.1, 0.1, 0.5, 0.5))


def test_detect_returns_empty_detection_below_threshold(detector, mock_ort_session):
    session, _ = mock_ort_session
    session.run.return_value = [build_model_output([(0.1, 0.1, 0.5, 0.5, 0.55, 0)])]
    frame = solid_frame(320, 320)

    outcome = detector.detect(frame)

    assert isinstance(outcome, EmptyDetection)
    assert outcome.frame is frame


def test_preprocess_drops_alpha_resizes_and_normalizes(detector, mock_ort_session):
    session, _ = mock_ort_session
    frame = solid_frame(640, 480, (255, 51, 0))

    detector.detect(frame)

    feed = session.run.call_args.args[1]
    tensor = feed["images"]
    assert tensor.shape == (1, 320, 320, 3)
    assert tensor.dtype == np.float32
    assert tensor[0, 0, 0] == pytest.approx([1.0, 0.2, 0.0])


def test_update_threshold_is_clamped_and_applied_without_reload(detector, mock_ort_session):
    session, constructor = mock_ort_session
    session.run.return_value = [build_model_output([(0.1, 0.1, 0.5, 0.5, 0.7, 0)])]

    detector.update_threshold(0.8)
    assert isinstance(detector.detect(solid_frame(320, 320)), EmptyDetection)

    detector.update_threshold(-3.0)
    assert detector.get_confidence_threshold() == 0.0
    detector.update_threshold(7.0)
    assert detector.get_confidence_threshold() == 1.0
    assert constructor.call_count == 1


def test_clear_is_idempotent(detector):
    detector.clear()
    detector.clear()

    assert not detector.is_ready()
    assert detector.detect(solid_frame(320, 320)) is None


def test_model_info_reports_geometry_and_readiness(detector):
    info = detector.get_model_info()

    assert info["model_name"] == "shade_small.onnx"
    assert info["tensor_width"] == 320
    assert info["ready"] is True


def test_factory_registers_onnx_backend():
    assert "onnx" in DetectorFactory.get_available_detectors()
    created = DetectorFactory.create_detector("onnx", model_path="a.onnx")
    assert isinstance(created, OnnxDetector)
    with pytest.raises(ValueError):
        DetectorFactory.create_detector("tensorrt", model_path="a.engine")
