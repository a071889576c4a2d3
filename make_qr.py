from __future__ import annotations

import argparse
import hashlib
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

import qrcode
import segno
from PIL import Image, ImageDraw
from qrcode.image.styledpil import StyledPilImage
from qrcode.image.styles.colormasks import SolidFillColorMask
from qrcode.image.styles.moduledrawers.pil import RoundedModuleDrawer

from redirect_table import ConfigError, RedirectTable

TRANSPARENT_RGBA = (0, 0, 0, 0)

# ==========================
# Default settings, each one exposed as a CLI option.
#
# base_url: public address of the redirect server; codes encode base_url + source path.
# config: redirection file, same format the server loads at startup.
# out_dir: one <stem>.png (and <stem>.svg) is written per source path.
# box_size: module size in pixels for the PNG.
# border: quiet zone in modules (4 is the standard minimum for print).
# error_level: error correction (h/q/m/l).
# color: module color; the background stays transparent.
# card: draw a rounded white card under the code for busy backgrounds.
DEFAULTS = {
    "base_url": "http://localhost:4404",
    "config": "config.json",
    "out_dir": "out",
    "box_size": 20,
    "border": 4,
    "error_level": "m",
    "color": "#000000",
    "card": False,
    "svg": True,
}

ERROR_LEVELS = {
    "h": qrcode.constants.ERROR_CORRECT_H,
    "q": qrcode.constants.ERROR_CORRECT_Q,
    "m": qrcode.constants.ERROR_CORRECT_M,
    "l": qrcode.constants.ERROR_CORRECT_L,
}


@dataclass
class Args:
    base_url: str
    config_path: Path
    paths: List[str]
    out_dir: Path
    box_size: int
    border: int
    error_level: str
    color: str
    card: bool
    svg: bool


def parse_args(argv: list[str]) -> Args:
    parser = argparse.ArgumentParser(
        description="Render a QR code for each redirection served by fourohfourfound."
    )
    parser.add_argument(
        "--base-url",
        default=DEFAULTS["base_url"],
        help="Public URL of the redirect server",
    )
    parser.add_argument(
        "--config", default=DEFAULTS["config"], help="Redirection configuration file"
    )
    parser.add_argument(
        "--path",
        action="append",
        default=[],
        dest="paths",
        help="Source path to encode (repeatable). Defaults to every path in --config.",
    )
    parser.add_argument("--out-dir", default=DEFAULTS["out_dir"], help="Output directory")
    parser.add_argument(
        "--box-size",
        type=int,
        default=DEFAULTS["box_size"],
        help="Module size in pixels for the PNG",
    )
    parser.add_argument(
        "--border",
        type=int,
        default=DEFAULTS["border"],
        help="Quiet zone in modules",
    )
    parser.add_argument(
        "--error-level",
        choices=sorted(ERROR_LEVELS),
        default=DEFAULTS["error_level"],
        help="Error correction level",
    )
    parser.add_argument("--color", default=DEFAULTS["color"], help="Module color (hex)")
    parser.add_argument(
        "--card",
        action="store_true",
        default=DEFAULTS["card"],
        help="Add a rounded white card under the code",
    )
    parser.add_argument(
        "--svg",
        action=argparse.BooleanOptionalAction,
        default=DEFAULTS["svg"],
        help="Also write an SVG next to each PNG",
    )
    ns = parser.parse_args(argv)
    return Args(
        base_url=ns.base_url,
        config_path=Path(ns.config),
        paths=ns.paths,
        out_dir=Path(ns.out_dir),
        box_size=ns.box_size,
        border=ns.border,
        error_level=ns.error_level,
        color=ns.color,
        card=ns.card,
        svg=ns.svg,
    )


def redirect_url(base_url: str, path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    return base_url.rstrip("/") + path


def file_stem(path: str) -> str:
    """Filesystem-safe name for a source path ("/" -> "root", "/a/b" -> "a_b")."""
    stem = re.sub(r"[^A-Za-z0-9_-]+", "_", path.strip("/"))
    return stem.strip("_") or "root"


def hex_to_rgb(hex_color: str) -> Tuple[int, int, int]:
    s = hex_color.strip().lstrip("#")
    if len(s) == 3:
        s = "".join(c * 2 for c in s)
    if len(s) != 6:
        raise ValueError(f"invalid color: {hex_color!r}")
    return int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16)


def draw_card(img: Image.Image) -> Image.Image:
    w, h = img.size
    pad = int(min(w, h) * 0.06)
    card = Image.new("RGBA", (w + 2 * pad, h + 2 * pad), TRANSPARENT_RGBA)
    draw = ImageDraw.Draw(card)
    radius = int(min(card.size) * 0.10)
    draw.rounded_rectangle(
        [0, 0, card.width, card.height], radius=radius, fill=(255, 255, 255, 255)
    )
    card.alpha_composite(img, dest=(pad, pad))
    return card


def make_png(data: str, out: Path, args: Args) -> Path:
    qr = qrcode.QRCode(
        error_correction=ERROR_LEVELS[args.error_level],
        box_size=args.box_size,
        border=args.border,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(
        image_factory=StyledPilImage,
        module_drawer=RoundedModuleDrawer(),
        color_mask=SolidFillColorMask(
            back_color=TRANSPARENT_RGBA,
            front_color=(*hex_to_rgb(args.color), 255),
        ),
    )
    # StyledPilImage wraps the PIL image
    pil_img = img.get_image() if hasattr(img, "get_image") else img
    pil_img = pil_img.convert("RGBA")
    if args.card:
        pil_img = draw_card(pil_img)

    out.parent.mkdir(parents=True, exist_ok=True)
    pil_img.save(out, format="PNG")
    return out


def make_svg(data: str, out: Path, args: Args) -> Path:
    out.parent.mkdir(parents=True, exist_ok=True)
    q = segno.make(data, error=args.error_level, micro=False)
    q.save(out, scale=10, border=args.border, light=None, dark=args.color)
    return out


def unique_stems(paths: List[str]) -> Dict[str, str]:
    """Map each path to its file stem, suffixing stems that several paths share."""
    stems = {path: file_stem(path) for path in paths}
    counts: Dict[str, int] = {}
    for stem in stems.values():
        counts[stem] = counts.get(stem, 0) + 1
    for path, stem in stems.items():
        if counts[stem] > 1:
            digest = hashlib.sha1(path.encode("utf-8")).hexdigest()[:8]
            stems[path] = f"{stem}-{digest}"
    return stems


def select_paths(args: Args) -> List[str]:
    if args.paths:
        return list(dict.fromkeys(args.paths))
    table = RedirectTable()
    table.load_file(args.config_path)
    return sorted(table.snapshot())


def main(argv: list[str]) -> int:
    args = parse_args(argv)

    try:
        paths = select_paths(args)
    except (OSError, ConfigError) as exc:
        print(f"[ERROR] Cannot read {args.config_path}: {exc}")
        return 1
    if not paths:
        print(f"[ERROR] No redirections to encode in {args.config_path}.")
        return 1

    for path, stem in unique_stems(paths).items():
        data = redirect_url(args.base_url, path)
        try:
            png_path = make_png(data, args.out_dir / f"{stem}.png", args)
            print(f"{data} -> {png_path}")
            if args.svg:
                svg_path = make_svg(data, args.out_dir / f"{stem}.svg", args)
                print(f"{data} -> {svg_path}")
        except (OSError, ValueError) as exc:
            print(f"[ERROR] Failed to render {data}: {exc}")
            return 1
    return 0


def cli() -> int:
    return main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(cli())
