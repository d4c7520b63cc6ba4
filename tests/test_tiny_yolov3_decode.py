import unittest

import numpy as np

from fakes import FakeBackend, tiny_config, tiny_outputs
from yolo_detect.errors import DecodingError, ModelConfigurationError
from yolo_detect.models import TinyYoloV3Strategy, create_strategy
from yolo_detect.preprocess import ChannelOrder, Preprocessor
from yolo_detect.types import BoundingBox, ModelOutput

INPUTS = ("input_1", "image_shape")
# Export with symbolic class/box dimensions.
UNKNOWN_SHAPES = {"yolonms_layer_1": (1, None, 4), "yolonms_layer_1:1": (1, None, None)}


def _strategy(outputs, labels=("cat",), output_shapes=None, **cfg_overrides) -> TinyYoloV3Strategy:
    backend = FakeBackend(outputs, INPUTS, output_shapes=output_shapes)
    return create_strategy(tiny_config(**cfg_overrides), labels, backend)


def _decode(strategy, outputs, w=100, h=100):
    raw = ModelOutput(boxes=[outputs["yolonms_layer_1"]], scores=[outputs["yolonms_layer_1:1"]])
    return strategy.decode_outputs(raw, w, h)


class TestTinyYoloV3Decode(unittest.TestCase):
    def test_single_detection(self) -> None:
        outputs = tiny_outputs([[10, 20, 110, 120]], [[0.9]])
        cands = _decode(_strategy(outputs), outputs)
        self.assertEqual(len(cands), 1)
        c = cands[0]
        self.assertEqual(c.label, "cat")
        self.assertEqual(c.class_id, 0)
        self.assertAlmostEqual(c.confidence, 0.9, places=6)
        self.assertEqual(c.box, BoundingBox(x=20, y=10, width=100, height=100))

    def test_below_threshold_is_rejected(self) -> None:
        outputs = tiny_outputs([[10, 20, 110, 120]], [[0.1]])
        self.assertEqual(_decode(_strategy(outputs), outputs), [])

    def test_threshold_boundary(self) -> None:
        at = np.float32(0.25)
        below = np.nextafter(at, np.float32(0))
        outputs = tiny_outputs([[0, 0, 10, 10], [20, 20, 30, 30]], [[at, below]])
        cands = _decode(_strategy(outputs), outputs)
        self.assertEqual(len(cands), 1)
        self.assertEqual(cands[0].box.x, 0)

    def test_tied_scores_pick_first_class(self) -> None:
        outputs = tiny_outputs([[0, 0, 10, 10]], [[0.2], [0.7], [0.7], [0.1]])
        cands = _decode(_strategy(outputs, labels=("a", "b", "c", "d")), outputs)
        self.assertEqual([c.label for c in cands], ["b"])

    def test_best_class_per_box(self) -> None:
        outputs = tiny_outputs(
            [[0, 0, 10, 10], [50, 50, 60, 60]],
            [[0.9, 0.1], [0.05, 0.6]],
        )
        cands = _decode(_strategy(outputs, labels=("person", "car")), outputs)
        self.assertEqual([(c.label, c.class_id) for c in cands], [("person", 0), ("car", 1)])

    def test_display_space_scaling(self) -> None:
        outputs = tiny_outputs([[10, 20, 110, 120]], [[0.9]])
        strategy = _strategy(outputs, display_size=(800, 450))
        cands = _decode(strategy, outputs, w=200, h=100)
        b = cands[0].box
        self.assertAlmostEqual(b.x, 20 * 4)
        self.assertAlmostEqual(b.y, 10 * 4.5)
        self.assertAlmostEqual(b.width, 100 * 4)
        self.assertAlmostEqual(b.height, 100 * 4.5)

    def test_class_id_outside_labels_fails(self) -> None:
        outputs = tiny_outputs([[0, 0, 10, 10]], [[0.1], [0.9]])
        with self.assertRaises(DecodingError):
            _decode(_strategy(outputs, labels=("only",), output_shapes=UNKNOWN_SHAPES), outputs)

    def test_unexpected_shapes_fail(self) -> None:
        outputs = tiny_outputs([[0, 0, 10, 10]], [[0.9]])
        strategy = _strategy(outputs)
        with self.assertRaises(DecodingError):
            strategy.decode_outputs(
                ModelOutput(boxes=[np.zeros((1, 1, 5), np.float32)], scores=[outputs["yolonms_layer_1:1"]]), 100, 100
            )
        with self.assertRaises(DecodingError):
            strategy.decode_outputs(
                ModelOutput(boxes=[outputs["yolonms_layer_1"]], scores=[np.zeros((1, 1, 3), np.float32)]), 100, 100
            )

    def test_empty_outputs(self) -> None:
        outputs = {
            "yolonms_layer_1": np.zeros((1, 0, 4), np.float32),
            "yolonms_layer_1:1": np.zeros((1, 80, 0), np.float32),
        }
        self.assertEqual(_decode(_strategy(outputs, labels=tuple(str(i) for i in range(80))), outputs), [])


class TestTinyYoloV3Inference(unittest.TestCase):
    def test_feeds_image_and_shape(self) -> None:
        outputs = tiny_outputs([[0, 0, 10, 10]], [[0.9]])
        backend = FakeBackend(outputs, INPUTS)
        strategy = TinyYoloV3Strategy(tiny_config(image_size=32), ("cat",), backend)
        prep = strategy.preprocess(np.zeros((20, 40, 3), dtype=np.uint8))
        raw = strategy.run_inference(prep)

        feeds = backend.calls[0]
        self.assertEqual(set(feeds), {"input_1", "image_shape"})
        self.assertEqual(feeds["input_1"].shape, (1, 3, 32, 32))
        self.assertTrue(np.array_equal(feeds["image_shape"], [[20, 40]]))
        self.assertEqual(len(raw.boxes), 1)
        self.assertEqual(strategy.channel_order, ChannelOrder.NCHW)

    def test_missing_tensor_binding_fails_at_load(self) -> None:
        outputs = tiny_outputs([[0, 0, 10, 10]], [[0.9]])
        backend = FakeBackend(outputs, ("input_1",))
        with self.assertRaises(ModelConfigurationError):
            TinyYoloV3Strategy(tiny_config(), ("cat",), backend)

    def test_declared_classes_must_have_labels(self) -> None:
        outputs = tiny_outputs([[0, 0, 10, 10]], [[0.9], [0.1], [0.1]])
        backend = FakeBackend(outputs, INPUTS)
        with self.assertRaises(ModelConfigurationError):
            TinyYoloV3Strategy(tiny_config(), ("a", "b"), backend)


if __name__ == "__main__":
    unittest.main()
