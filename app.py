import argparse
import logging
import sys
from typing import List, Optional

from PySide6.QtCore import QCoreApplication

from rebg.config import settings
from rebg.controller import EditorController
from rebg.errors import EditError
from rebg.geometry import AspectRatio, Rect
from rebg.io import load_image_rgba
from rebg.logging_setup import setup_logging
from rebg.state import EffectType, FilterType

log = logging.getLogger("rebg.app")


def _enum_by_name(enum_cls, value: str):
    key = value.strip().upper().replace("-", "_")
    try:
        return enum_cls[key]
    except KeyError:
        names = ", ".join(m.name.lower() for m in enum_cls)
        raise argparse.ArgumentTypeError(f"unknown {enum_cls.__name__} {value!r} (choose from {names})")


def _rect(value: str) -> Rect:
    try:
        x, y, w, h = (float(v) for v in value.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected X,Y,W,H, got {value!r}")
    return Rect(x, y, w, h)


def _size(value: str):
    try:
        w, h = (float(v) for v in value.lower().split("x"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected WxH, got {value!r}")
    return (w, h)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rebg", description="Apply non-destructive edits to a photo.")
    p.add_argument("input")
    p.add_argument("output")
    p.add_argument("--filter", type=lambda v: _enum_by_name(FilterType, v))
    p.add_argument("--effect", type=lambda v: _enum_by_name(EffectType, v))
    p.add_argument("--brightness", type=float)
    p.add_argument("--contrast", type=float)
    p.add_argument("--saturation", type=float)
    p.add_argument("--blur", type=float)
    p.add_argument("--rotate", choices=("left", "right"), action="append", default=[])
    p.add_argument("--aspect", type=lambda v: _enum_by_name(AspectRatio, v))
    p.add_argument("--custom-size", type=_size, help="canvas size as WxH")
    p.add_argument("--crop", type=_rect, action="append", default=[],
                   help="X,Y,W,H relative to the image as displayed; repeat to crop again")
    bg = p.add_mutually_exclusive_group()
    bg.add_argument("--background", help="solid background color, e.g. '#3B82F6'")
    bg.add_argument("--gradient", help="comma separated gradient colors, top to bottom")
    bg.add_argument("--background-image")
    p.add_argument("--no-segment", action="store_true", help="keep the original background")
    p.add_argument("--timeout", type=float, default=60.0)
    p.add_argument("--log-level", default=settings.log_level)
    return p


def run(args: argparse.Namespace) -> int:
    ctl = EditorController(auto_segment=not args.no_segment)
    try:
        ctl.set_image(load_image_rgba(args.input))
        # Segment before cropping so the foreground matches the full frame.
        ctl.process_pending(args.timeout)

        if args.filter is not None:
            ctl.set_filter(args.filter)
        if args.effect is not None:
            ctl.set_effect(args.effect)
        if any(v is not None for v in (args.brightness, args.contrast, args.saturation, args.blur)):
            ctl.set_adjustments(args.brightness, args.contrast, args.saturation, args.blur)
            ctl.finish_adjustment()
        for direction in args.rotate:
            if direction == "left":
                ctl.rotate_left()
            else:
                ctl.rotate_right()
        if args.custom_size is not None:
            ctl.set_custom_size(*args.custom_size)
        elif args.aspect is not None:
            ctl.set_aspect_ratio(args.aspect)
        for rect in args.crop:
            ctl.apply_crop(rect)
        if args.background:
            ctl.set_background_color(args.background)
        elif args.gradient:
            ctl.set_background_gradient([c.strip() for c in args.gradient.split(",")])
        elif args.background_image:
            ctl.set_background_image(load_image_rgba(args.background_image))

        if not ctl.process_pending(args.timeout):
            log.error("Timed out waiting for the edit pipeline")
            return 1
        fmt = ctl.save_export(args.output)
        log.info("Wrote %s (%s)", args.output, fmt)
        return 0
    except (EditError, ValueError, OSError) as exc:
        log.error("%s", exc)
        return 2
    finally:
        ctl.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    app.setApplicationName("re-bg")
    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
