import gc
import tempfile
import unittest
import weakref
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

import numpy as np

from fakes import COCO_LIKE, tiny_config
from yolo_detect.backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig
from yolo_detect.detector import ObjectDetector, load_detector
from yolo_detect.errors import InferenceError, ModelConfigurationError

TINY_INPUTS = {"input_1": ["N", 3, 416, 416], "image_shape": ["N", 2]}
TINY_OUTPUTS = {"yolonms_layer_1": [1, "n", 4], "yolonms_layer_1:1": [1, len(COCO_LIKE), "n"]}


def _session_factory(inputs, outputs, run_result=None, run_error=None, created=None):
    """
    Build an onnxruntime.InferenceSession replacement with the given declared metadata.
    """

    class _Session:
        def __init__(self, path, sess_options=None, providers=None):
            self.path = path
            self.providers = providers
            if created is not None:
                created.append(weakref.ref(self))

        def get_inputs(self):
            return [SimpleNamespace(name=n, shape=s) for n, s in inputs.items()]

        def get_outputs(self):
            return [SimpleNamespace(name=n, shape=s) for n, s in outputs.items()]

        def get_providers(self):
            return list(self.providers or ["CPUExecutionProvider"])

        def run(self, output_names, feeds):
            if run_error is not None:
                raise run_error
            return [run_result[n] for n in output_names]

    return _Session


class _ModelDir:
    """
    Temp dir holding a placeholder model file and the COCO_LIKE label file.
    """

    def __enter__(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.model_path = root / "model.onnx"
        self.model_path.write_bytes(b"onnx")
        self.labels_path = root / "labels.txt"
        self.labels_path.write_text("\n".join(COCO_LIKE) + "\n", encoding="utf-8")
        return self

    def __exit__(self, *exc_info):
        self._tmp.cleanup()


def _patch_session(session_cls):
    return mock.patch("onnxruntime.InferenceSession", new=session_cls)


class TestOnnxRuntimeBackend(unittest.TestCase):
    def test_symbolic_dims_become_none(self) -> None:
        session = _session_factory({"x": ["n", 2]}, {"y": [None, 2]})
        with _ModelDir() as d, _patch_session(session):
            backend = OnnxRuntimeBackend(d.model_path)
        self.assertEqual(backend.input_shapes, {"x": (None, 2)})
        self.assertEqual(backend.output_shapes, {"y": (None, 2)})
        self.assertEqual(backend.input_names, ["x"])
        self.assertEqual(backend.output_names, ["y"])

    def test_run_returns_outputs_by_name(self) -> None:
        out = np.array([[0.0, 2.0]], dtype=np.float32)
        session = _session_factory({"x": ["n", 2]}, {"y": ["n", 2]}, run_result={"y": out})
        with _ModelDir() as d, _patch_session(session):
            backend = OnnxRuntimeBackend(d.model_path)
        result = backend.run({"x": np.array([[-1.0, 2.0]], dtype=np.float32)}, ["y"])
        self.assertEqual(list(result), ["y"])
        np.testing.assert_array_equal(result["y"], out)

    def test_run_failure_becomes_inference_error(self) -> None:
        session = _session_factory({"x": ["n", 2]}, {"y": ["n", 2]}, run_error=RuntimeError("bad feed shape"))
        with _ModelDir() as d, _patch_session(session):
            backend = OnnxRuntimeBackend(d.model_path)
        with self.assertRaises(InferenceError) as ctx:
            backend.run({"x": np.zeros((1, 3), dtype=np.float32)}, ["y"])
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)

    def test_close_is_idempotent_and_blocks_run(self) -> None:
        session = _session_factory({"x": ["n", 2]}, {"y": ["n", 2]})
        with _ModelDir() as d, _patch_session(session):
            backend = OnnxRuntimeBackend(d.model_path)
        self.assertFalse(backend.closed)

        backend.close()
        backend.close()
        self.assertTrue(backend.closed)
        self.assertEqual(tuple(backend.providers_in_use), ())
        with self.assertRaises(InferenceError):
            backend.run({"x": np.zeros((1, 2), dtype=np.float32)}, ["y"])

    def test_context_manager_closes(self) -> None:
        session = _session_factory({"x": ["n", 2]}, {"y": ["n", 2]})
        with _ModelDir() as d, _patch_session(session):
            with OnnxRuntimeBackend(d.model_path) as backend:
                self.assertFalse(backend.closed)
        self.assertTrue(backend.closed)

    def test_providers_passed_through(self) -> None:
        session = _session_factory({"x": ["n", 2]}, {"y": ["n", 2]})
        with _ModelDir() as d, _patch_session(session):
            backend = OnnxRuntimeBackend(d.model_path, OnnxRuntimeBackendConfig(providers=["CPUExecutionProvider"]))
        self.assertEqual(tuple(backend.providers_in_use), ("CPUExecutionProvider",))

    def test_missing_model_file(self) -> None:
        with self.assertRaises(ModelConfigurationError):
            OnnxRuntimeBackend(Path("does/not/exist.onnx"))

    def test_model_without_inputs_releases_session(self) -> None:
        created = []
        session = _session_factory({}, {"y": ["n", 2]}, created=created)
        with _ModelDir() as d, _patch_session(session):
            with self.assertRaises(ModelConfigurationError):
                OnnxRuntimeBackend(d.model_path)
        gc.collect()
        self.assertEqual(len(created), 1)
        self.assertIsNone(created[0]())


class TestLoadDetector(unittest.TestCase):
    def test_builds_detector_from_model_config(self) -> None:
        run_result = {
            "yolonms_layer_1": np.array([[[10, 20, 110, 120]]], dtype=np.float32),
            "yolonms_layer_1:1": np.array([[[0.9], [0.0], [0.0], [0.0]]], dtype=np.float32),
        }
        session = _session_factory(TINY_INPUTS, TINY_OUTPUTS, run_result=run_result)
        with _ModelDir() as d, _patch_session(session):
            cfg = tiny_config(model_path=d.model_path, labels_path=d.labels_path)
            detector = load_detector(cfg, onnx_providers=["CPUExecutionProvider"])

        self.assertIsInstance(detector, ObjectDetector)
        self.assertEqual(detector.labels, COCO_LIKE)
        with detector:
            results = detector.detect_image(np.zeros((100, 100, 3), dtype=np.uint8))
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].label, "person")
        self.assertEqual(results[0].bounding_box.as_xyxy(), (20.0, 10.0, 120.0, 110.0))

    def test_closes_backend_when_labels_do_not_cover_model(self) -> None:
        outputs = dict(TINY_OUTPUTS, **{"yolonms_layer_1:1": [1, 80, "n"]})
        self._assert_backend_closed_on_failure(outputs)

    def test_closes_backend_when_tensor_binding_missing(self) -> None:
        outputs = {"yolonms_layer_1": [1, "n", 4]}
        self._assert_backend_closed_on_failure(outputs)

    def _assert_backend_closed_on_failure(self, outputs) -> None:
        session = _session_factory(TINY_INPUTS, outputs)
        original_close = OnnxRuntimeBackend.close
        with _ModelDir() as d, _patch_session(session), mock.patch.object(
            OnnxRuntimeBackend, "close", autospec=True, side_effect=original_close
        ) as close:
            cfg = tiny_config(model_path=d.model_path, labels_path=d.labels_path)
            with self.assertRaises(ModelConfigurationError):
                load_detector(cfg)

        close.assert_called_once()
        backend = close.call_args[0][0]
        self.assertTrue(backend.closed)


if __name__ == "__main__":
    unittest.main()
