"""Resize and mode helpers applied before encoding."""
import logging
from typing import Optional, Tuple

from PIL import Image

logger = logging.getLogger("converter.resize")


def resize_keep_aspect(
    img: Image.Image,
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
) -> Image.Image:
    """
    Scale image to fit within target width and/or height, maintaining aspect ratio.
    If only one dimension is set, the other is computed from the image ratio.
    """
    w, h = img.size
    if target_width is None and target_height is None:
        return img.copy()
    if target_width is not None and target_height is not None:
        scale = min(target_width / w, target_height / h)
    elif target_width is not None:
        scale = target_width / w
    else:
        scale = target_height / h
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    return img.resize((new_w, new_h), Image.Resampling.LANCZOS)


def downscale_to_limit(img: Image.Image, max_dimension: int) -> Tuple[Image.Image, bool]:
    """Shrink so the longest side is at most max_dimension. Returns (image, downscaled)."""
    w, h = img.size
    if max_dimension <= 0 or max(w, h) <= max_dimension:
        return img, False
    out = resize_keep_aspect(img, target_width=max_dimension, target_height=max_dimension)
    logger.info("Downscaled %sx%s -> %sx%s", w, h, out.width, out.height)
    return out, True


def prepare_mode(img: Image.Image, pil_format: str, background: Tuple[int, int, int] = (255, 255, 255)) -> Image.Image:
    """Convert to a mode the target encoder accepts. JPEG has no alpha, so flatten onto background."""
    if pil_format == "JPEG":
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            rgba = img.convert("RGBA")
            flat = Image.new("RGB", rgba.size, background)
            flat.paste(rgba, mask=rgba.split()[3])
            return flat
        if img.mode != "RGB":
            return img.convert("RGB")
        return img
    if img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        return img.convert("RGBA" if "A" in img.getbands() else "RGB")
    if pil_format == "WEBP" and img.mode in ("P", "L", "LA"):
        return img.convert("RGBA" if img.mode == "LA" or "transparency" in img.info else "RGB")
    return img
