from __future__ import annotations

import unittest

from PIL import Image

from rebg.errors import InvalidCropError
from rebg.geometry import Rect
from rebg.history import EditHistory
from rebg.state import (
    Adjustments,
    EditParameters,
    FilterType,
    GradientBackground,
    ImageBackground,
    SolidBackground,
)


def _state(i: int) -> EditParameters:
    return EditParameters(adjustments=Adjustments(brightness=1.0 + i * 0.01))


class EditHistoryTests(unittest.TestCase):
    def test_undo_redo_round_trip(self) -> None:
        states = [_state(i) for i in range(6)]
        history = EditHistory(states[0], limit=20)
        for s in states[1:]:
            self.assertTrue(history.commit(s))

        visited = []
        for _ in range(len(states) - 1):
            visited.append(history.undo())
        self.assertEqual(visited, list(reversed(states[:-1])))
        self.assertEqual(history.current, states[0])

        for _ in range(len(states) - 1):
            history.redo()
        self.assertEqual(history.current, states[-1])
        self.assertFalse(history.can_redo)

    def test_identical_commits_are_coalesced(self) -> None:
        history = EditHistory(_state(0))
        self.assertTrue(history.commit(_state(1)))
        self.assertFalse(history.commit(_state(1)))
        self.assertEqual(len(history), 2)

    def test_coalescing_compares_every_field(self) -> None:
        base = EditParameters(crop_rect=Rect(0.1, 0.1, 0.5, 0.5), background=GradientBackground(((0, 0, 0, 255),)))
        history = EditHistory(base)
        self.assertFalse(history.commit(EditParameters(crop_rect=Rect(0.1, 0.1, 0.5, 0.5),
                                                       background=GradientBackground(((0, 0, 0, 255),)))))
        self.assertTrue(history.commit(base.evolve(crop_rect=Rect(0.1, 0.1, 0.5, 0.6))))
        self.assertTrue(history.commit(base.evolve(background=SolidBackground((0, 0, 0, 255)))))

    def test_background_images_compare_by_identity(self) -> None:
        img_a = Image.new("RGBA", (2, 2))
        img_b = Image.new("RGBA", (2, 2))
        history = EditHistory(EditParameters(background=ImageBackground(img_a)))
        self.assertFalse(history.commit(EditParameters(background=ImageBackground(img_a))))
        self.assertTrue(history.commit(EditParameters(background=ImageBackground(img_b))))

    def test_bounded_history_evicts_oldest(self) -> None:
        limit = 5
        states = [_state(i) for i in range(limit + 6)]
        history = EditHistory(states[0], limit=limit)
        for s in states[1:]:
            history.commit(s)

        self.assertEqual(len(history), limit)
        for _ in range(limit - 1):
            self.assertIsNotNone(history.undo())
        # floor reached: the evicted states are gone
        self.assertIsNone(history.undo())
        self.assertEqual(history.current, states[-limit])

    def test_undo_at_floor_is_noop(self) -> None:
        history = EditHistory(_state(0))
        self.assertFalse(history.can_undo)
        self.assertIsNone(history.undo())
        self.assertEqual(history.current, _state(0))
        self.assertEqual(history.redo_depth, 0)

    def test_new_commit_clears_redo(self) -> None:
        history = EditHistory(_state(0))
        history.commit(_state(1))
        history.commit(_state(2))
        history.undo()
        self.assertTrue(history.can_redo)

        history.commit(EditParameters(filter=FilterType.SEPIA))
        self.assertFalse(history.can_redo)
        self.assertIsNone(history.redo())

    def test_redo_on_empty_is_noop(self) -> None:
        history = EditHistory(_state(0))
        history.commit(_state(1))
        self.assertIsNone(history.redo())
        self.assertEqual(history.current, _state(1))

    def test_out_of_range_crop_is_clamped_before_storage(self) -> None:
        history = EditHistory(EditParameters())
        self.assertTrue(history.commit(EditParameters(crop_rect=Rect(0.9, 0.9, 0.5, 0.01))))
        stored = history.current.crop_rect
        self.assertTrue(stored.is_close(Rect(0.5, 0.855, 0.5, 0.1)))
        self.assertGreaterEqual(stored.x, 0.0)
        self.assertLessEqual(stored.max_x, 1.0)
        self.assertLessEqual(stored.max_y, 1.0)
        self.assertGreaterEqual(stored.height, 0.1)

    def test_degenerate_crop_is_rejected(self) -> None:
        for rect in (Rect(0.1, 0.1, 0.0, 0.5), Rect(0.1, 0.1, 0.5, -0.2), Rect(float("nan"), 0.0, 0.5, 0.5)):
            with self.subTest(rect=rect):
                with self.assertRaises(InvalidCropError):
                    EditParameters(crop_rect=rect)
        with self.assertRaises(InvalidCropError):
            EditParameters().evolve(crop_rect=Rect(0.0, 0.0, float("inf"), 1.0))

    def test_reset_installs_new_floor(self) -> None:
        history = EditHistory(_state(0))
        history.commit(_state(1))
        history.undo()
        history.reset(_state(9))
        self.assertEqual(len(history), 1)
        self.assertFalse(history.can_redo)
        self.assertEqual(history.current, _state(9))


if __name__ == "__main__":
    unittest.main()
