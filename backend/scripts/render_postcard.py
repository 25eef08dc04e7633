"""Render a postcard to a local file without sending it.

Usage (from backend/):
    python -m scripts.render_postcard --name Ada --handle ada --message "Hi there" \
        --photo photo.jpg --signature sig.png [--stamp me.jpg] [--background "#1E3A5F"] \
        [--renderer canvas|markup] [--scale 4] [--format png|jpeg] [--preview] --out postcard.png

Handy for checking that both renderers agree on a layout: render the same
inputs with --renderer canvas and --renderer markup and compare the files.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from domain.errors import PostcardError
from domain.models import ImageFormat, PostcardSpec, RenderedPostcard, RenderOptions, RendererKind
from services.assets import register_heif_opener
from services.browser_pool import BrowserPool
from services.canvas_compositor import CanvasCompositor
from services.delivery import validate_spec
from services.markup_renderer import MarkupRenderer
from settings import settings

logger = logging.getLogger("render_postcard")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Render a postcard image to a file.")
    parser.add_argument("--name", required=True, help="Recipient name for the greeting.")
    parser.add_argument("--handle", required=True, help="Sender handle (leading @ optional).")
    parser.add_argument("--message", required=True, help="Message body.")
    parser.add_argument("--photo", help="Photo for the back side (path, URL or data URL).")
    parser.add_argument("--signature", help="Signature image (path, URL or data URL).")
    parser.add_argument("--stamp", help="Sender profile photo used as the stamp.")
    parser.add_argument("--background", default="#FFFFFF", help="Front background color (#RRGGBB).")
    parser.add_argument("--renderer", choices=[k.value for k in RendererKind], default=RendererKind.CANVAS.value)
    parser.add_argument("--scale", type=int, default=4, help="Device pixel ratio of the output.")
    parser.add_argument("--format", choices=[f.value for f in ImageFormat], default=ImageFormat.PNG.value)
    parser.add_argument("--preview", action="store_true", help="Draw placeholders for a missing photo/signature.")
    parser.add_argument("--out", required=True, help="Output file.")
    return parser


async def _render_markup(spec: PostcardSpec, options: RenderOptions) -> RenderedPostcard:
    pool = BrowserPool(headless=settings.BROWSER_HEADLESS)
    try:
        return await MarkupRenderer(pool).render(spec, options)
    finally:
        await pool.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    if not logger.handlers:
        logging.basicConfig(level=logging.INFO, format="%(message)s")
    args = build_parser().parse_args(argv)
    register_heif_opener()

    spec = PostcardSpec(
        recipient_name=args.name,
        sender_handle=args.handle,
        message=args.message,
        background_color=args.background,
        stamp_image=args.stamp,
        photo_image=args.photo,
        signature_image=args.signature,
    )
    try:
        options = RenderOptions(scale=args.scale, image_format=ImageFormat(args.format), preview=args.preview)
    except ValueError as exc:
        logger.error("Invalid options: %s", exc)
        return 2

    try:
        if not args.preview:
            validate_spec(spec)
        if args.renderer == RendererKind.MARKUP.value:
            rendered = asyncio.run(_render_markup(spec, options))
        else:
            rendered = CanvasCompositor().compose(spec, options)
    except PostcardError as exc:
        logger.error("Render failed: %s", exc.message)
        return 1

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(rendered.data)
    logger.info("Wrote %s (%sx%s, %s renderer)", out, rendered.width, rendered.height, rendered.renderer.value)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
