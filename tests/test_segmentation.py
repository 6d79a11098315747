from __future__ import annotations

import threading
import time
import unittest

import numpy as np
from PIL import Image

from rebg.segmentation import color_key_mask, dominant_border_color, segment

GREEN = (0, 200, 0, 255)
RED = (220, 20, 20, 255)


def _subject_on_backdrop() -> Image.Image:
    img = Image.new("RGBA", (12, 10), GREEN)
    for y in range(3, 7):
        for x in range(4, 8):
            img.putpixel((x, y), RED)
    return img


def _pump(seconds: float = 0.05) -> None:
    from PySide6.QtCore import QCoreApplication

    deadline = time.monotonic() + seconds
    while time.monotonic() < deadline:
        QCoreApplication.processEvents()
        time.sleep(0.005)


class SegmentTests(unittest.TestCase):
    def test_backdrop_becomes_transparent(self) -> None:
        out = segment(_subject_on_backdrop(), grow_shrink=0, feather_radius=0)
        self.assertIsNotNone(out)
        arr = np.array(out)
        self.assertEqual(out.size, (12, 10))
        self.assertEqual(int(arr[0, 0, 3]), 0)
        self.assertEqual(int(arr[9, 11, 3]), 0)
        self.assertEqual(tuple(arr[4, 5]), RED)

    def test_input_is_not_mutated(self) -> None:
        img = _subject_on_backdrop()
        before = img.tobytes()
        segment(img)
        self.assertEqual(img.tobytes(), before)

    def test_noisy_border_has_no_backdrop(self) -> None:
        rng = np.random.default_rng(3)
        arr = rng.integers(0, 256, size=(16, 16, 3), dtype=np.uint8)
        self.assertIsNone(segment(Image.fromarray(arr)))

    def test_flat_image_is_not_emptied(self) -> None:
        self.assertIsNone(segment(Image.new("RGB", (8, 8), (10, 10, 10))))

    def test_color_key_mask_tolerance(self) -> None:
        rgb = np.array([[[0, 0, 0], [3, 4, 0], [10, 0, 0]]], dtype=np.uint8)
        mask = color_key_mask(rgb, (0, 0, 0), 5)
        self.assertEqual(mask.tolist(), [[True, True, False]])
        self.assertFalse(color_key_mask(rgb, (0, 0, 0), 0).any())

    def test_dominant_border_color(self) -> None:
        rgb = np.array(_subject_on_backdrop().convert("RGB"))
        self.assertEqual(dominant_border_color(rgb, 40, 0.6), GREEN[:3])


class BackgroundRemoverTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        try:
            from PySide6.QtCore import QCoreApplication

            cls.app = QCoreApplication.instance() or QCoreApplication([])
            from rebg.segmentation import BackgroundRemover
        except Exception as exc:  # pragma: no cover - environment dependency
            raise unittest.SkipTest(f"missing runtime dependency: {exc}")
        cls.BackgroundRemover = BackgroundRemover

    def _remover(self, segmenter):
        remover = self.BackgroundRemover(segmenter)
        self.addCleanup(remover.shutdown)
        results = []
        busy = []
        remover.finished.connect(lambda gen, img: results.append((gen, img)))
        remover.busyChanged.connect(busy.append)
        return remover, results, busy

    def test_result_is_delivered(self) -> None:
        done = Image.new("RGBA", (1, 1))
        remover, results, busy = self._remover(lambda img: done)
        gen = remover.start(Image.new("RGBA", (1, 1)))
        self.assertTrue(remover.wait_for_idle(5.0))
        _pump()
        self.assertEqual(results, [(gen, done)])
        self.assertEqual(busy, [True, False])
        self.assertFalse(remover.is_busy)

    def test_cancelled_result_is_dropped(self) -> None:
        release = threading.Event()

        def slow(img):
            release.wait(5.0)
            return img

        remover, results, busy = self._remover(slow)
        remover.start(Image.new("RGBA", (1, 1)))
        remover.cancel()
        release.set()
        self.assertTrue(remover.wait_for_idle(5.0))
        _pump()
        self.assertEqual(results, [])
        self.assertFalse(remover.is_busy)

    def test_restart_supersedes_previous_job(self) -> None:
        release = threading.Event()
        first = Image.new("RGBA", (1, 1))
        second = Image.new("RGBA", (2, 2))

        def seg(img):
            if img is first:
                release.wait(5.0)
            return img

        remover, results, _ = self._remover(seg)
        remover.start(first)
        gen = remover.start(second)
        release.set()
        self.assertTrue(remover.wait_for_idle(5.0))
        _pump()
        self.assertEqual(results, [(gen, second)])

    def test_failure_reports_no_foreground(self) -> None:
        def broken(img):
            raise RuntimeError("model unavailable")

        remover, results, _ = self._remover(broken)
        gen = remover.start(Image.new("RGBA", (1, 1)))
        self.assertTrue(remover.wait_for_idle(5.0))
        _pump()
        self.assertEqual(results, [(gen, None)])


if __name__ == "__main__":
    unittest.main()
