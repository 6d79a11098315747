from __future__ import annotations

import unittest

import numpy as np
from PIL import Image

from rebg.compositor import compose
from rebg.geometry import AspectRatio, Rect, resolve_geometry
from rebg.state import (
    Adjustments,
    EditParameters,
    EffectType,
    FilterType,
    GradientBackground,
    ImageBackground,
    NoBackground,
    SolidBackground,
)

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)
GREEN = (0, 255, 0, 255)


def _compose(fg: Image.Image, params: EditParameters, **kw) -> np.ndarray:
    frame = resolve_geometry(
        fg.size,
        rotation=params.rotation,
        aspect_ratio=params.aspect_ratio,
        custom_size=params.custom_size,
        crop_rect=params.crop_rect,
    )
    out = compose(fg, params.background, params, frame, **kw)
    return np.array(out.convert("RGBA"), dtype=np.uint8)


def _two_tone() -> Image.Image:
    """2x1: red on the left, blue on the right."""
    img = Image.new("RGBA", (2, 1), RED)
    img.putpixel((1, 0), BLUE)
    return img


class CompositorTests(unittest.TestCase):
    def test_transparent_foreground_shows_solid_background(self) -> None:
        fg = Image.new("RGBA", (2, 2), (255, 0, 0, 255))
        fg.putpixel((1, 0), (0, 0, 0, 0))
        arr = _compose(fg, EditParameters(background=SolidBackground(GREEN)))
        self.assertEqual(tuple(arr[0, 0]), RED)
        self.assertEqual(tuple(arr[0, 1]), GREEN)

    def test_transparent_background_keeps_alpha(self) -> None:
        fg = Image.new("RGBA", (2, 2), (255, 0, 0, 255))
        fg.putpixel((0, 1), (0, 0, 0, 0))
        arr = _compose(fg, EditParameters(background=NoBackground()))
        self.assertEqual(int(arr[0, 0, 3]), 255)
        self.assertEqual(int(arr[1, 0, 3]), 0)

    def test_rotation_is_clockwise(self) -> None:
        arr = _compose(_two_tone(), EditParameters(rotation=90))
        self.assertEqual(arr.shape[:2], (2, 1))
        self.assertEqual(tuple(arr[0, 0]), RED)
        self.assertEqual(tuple(arr[1, 0]), BLUE)

        arr = _compose(_two_tone(), EditParameters(rotation=270))
        self.assertEqual(tuple(arr[0, 0]), BLUE)
        self.assertEqual(tuple(arr[1, 0]), RED)

    def test_crop_uses_original_image_coordinates(self) -> None:
        fg = Image.new("RGBA", (4, 4), RED)
        for x in range(2, 4):
            for y in range(4):
                fg.putpixel((x, y), BLUE)
        arr = _compose(fg, EditParameters(crop_rect=Rect(0.5, 0.0, 0.5, 0.5)))
        self.assertEqual(arr.shape[:2], (2, 2))
        self.assertTrue(np.all(arr == np.array(BLUE, dtype=np.uint8)))

    def test_square_canvas_pads_with_background(self) -> None:
        fg = Image.new("RGBA", (4, 2), RED)
        arr = _compose(fg, EditParameters(aspect_ratio=AspectRatio.SQUARE))
        self.assertEqual(arr.shape[:2], (4, 4))
        self.assertEqual(int(arr[0, 0, 3]), 0)
        self.assertEqual(tuple(arr[1, 0]), RED)
        self.assertEqual(tuple(arr[2, 3]), RED)
        self.assertEqual(int(arr[3, 3, 3]), 0)

    def test_gradient_background_runs_top_to_bottom(self) -> None:
        fg = Image.new("RGBA", (1, 3), (0, 0, 0, 0))
        params = EditParameters(background=GradientBackground(((0, 0, 0, 255), (255, 255, 255, 255))))
        arr = _compose(fg, params)
        self.assertEqual(tuple(arr[0, 0]), (0, 0, 0, 255))
        self.assertEqual(tuple(arr[2, 0]), (255, 255, 255, 255))
        self.assertTrue(100 < int(arr[1, 0, 0]) < 155)

    def test_background_image_fills_canvas(self) -> None:
        fg = Image.new("RGBA", (4, 4), (0, 0, 0, 0))
        bg = Image.new("RGBA", (8, 2), BLUE)
        arr = _compose(fg, EditParameters(background=ImageBackground(bg)))
        self.assertEqual(arr.shape[:2], (4, 4))
        diff = np.abs(arr.astype(np.int32) - np.array(BLUE, dtype=np.int32))
        self.assertLessEqual(int(diff.max()), 1)

    def test_stage_order_is_filter_effect_adjustments(self) -> None:
        calls = []

        def fake_filter(kind, img):
            calls.append(("filter", kind))
            return img

        def fake_effect(kind, img):
            calls.append(("effect", kind))
            return img

        params = EditParameters(filter=FilterType.MONO, effect=EffectType.GRAIN)
        _compose(_two_tone(), params, apply_filter=fake_filter, apply_effect=fake_effect)
        self.assertEqual(calls, [("filter", FilterType.MONO), ("effect", EffectType.GRAIN)])

    def test_failing_filter_falls_back_to_unmodified_foreground(self) -> None:
        def broken_filter(kind, img):
            raise RuntimeError("unsupported input")

        def null_effect(kind, img):
            return None

        params = EditParameters(filter=FilterType.SEPIA, effect=EffectType.EDGES, background=SolidBackground(GREEN))
        arr = _compose(_two_tone(), params, apply_filter=broken_filter, apply_effect=null_effect)
        expected = _compose(_two_tone(), EditParameters(background=SolidBackground(GREEN)))
        self.assertTrue(np.array_equal(arr, expected))

    def test_adjustments_apply_to_foreground(self) -> None:
        fg = Image.new("RGBA", (2, 2), (100, 100, 100, 255))
        arr = _compose(fg, EditParameters(adjustments=Adjustments(brightness=2.0)))
        self.assertEqual(tuple(arr[0, 0]), (200, 200, 200, 255))

    def test_inputs_are_not_mutated(self) -> None:
        fg = _two_tone()
        bg = Image.new("RGBA", (3, 3), GREEN)
        fg_before = fg.tobytes()
        bg_before = bg.tobytes()
        params = EditParameters(
            filter=FilterType.NOIR,
            effect=EffectType.VIGNETTE,
            rotation=180,
            adjustments=Adjustments(contrast=1.5, blur=1.0),
            background=ImageBackground(bg),
        )
        _compose(fg, params)
        self.assertEqual(fg.tobytes(), fg_before)
        self.assertEqual(bg.tobytes(), bg_before)


if __name__ == "__main__":
    unittest.main()
