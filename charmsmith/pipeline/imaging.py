"""
Local Image Processing

Pure-numpy fallback for the remote transformation endpoint: decode, scale the
longer side to the target, bilinear resample, pad onto a white square,
desaturate, and re-encode as JPEG. Pillow is used only for the codecs.
"""

import io
import math
from typing import Tuple

import numpy as np
from PIL import Image

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def decode_rgba(data: bytes, content_type: str) -> np.ndarray:
    """Decode PNG or JPEG bytes into an (H, W, 4) uint8 array."""
    if "png" in (content_type or "").lower():
        image = Image.open(io.BytesIO(data), formats=["PNG"])
    else:
        image = Image.open(io.BytesIO(data), formats=["JPEG"])
    return np.asarray(image.convert("RGBA"), dtype=np.uint8)


def scaled_dimensions(width: int, height: int, target: int) -> Tuple[int, int]:
    """Scale so the longer side equals ``target``, preserving aspect ratio."""
    aspect = width / height
    if width > height:
        scaled_w = target
        scaled_h = _round_half_up(target / aspect)
    else:
        scaled_h = target
        scaled_w = _round_half_up(target * aspect)
    return max(scaled_w, 1), max(scaled_h, 1)


def bilinear_resize(src: np.ndarray, dst_width: int, dst_height: int) -> np.ndarray:
    """
    Resample an (H, W, C) uint8 array with bilinear interpolation.

    For each destination pixel the source coordinate is ``dst * (src / dst)``;
    the four neighbours are (x0, y0), (x1, y0), (x0, y1), (x1, y1) with the
    second sample clamped to the last valid column/row.
    """
    src_height, src_width = src.shape[:2]

    src_x = np.arange(dst_width) * (src_width / dst_width)
    src_y = np.arange(dst_height) * (src_height / dst_height)

    x0 = np.floor(src_x).astype(np.intp)
    y0 = np.floor(src_y).astype(np.intp)
    x1 = np.minimum(x0 + 1, src_width - 1)
    y1 = np.minimum(y0 + 1, src_height - 1)

    x_weight = (src_x - x0)[np.newaxis, :, np.newaxis]
    y_weight = (src_y - y0)[:, np.newaxis, np.newaxis]

    # Gather in uint8 and widen only the destination-sized samples
    top_left = src[y0[:, np.newaxis], x0[np.newaxis, :]].astype(np.float64)
    top_right = src[y0[:, np.newaxis], x1[np.newaxis, :]].astype(np.float64)
    bottom_left = src[y1[:, np.newaxis], x0[np.newaxis, :]].astype(np.float64)
    bottom_right = src[y1[:, np.newaxis], x1[np.newaxis, :]].astype(np.float64)

    top = top_left + (top_right - top_left) * x_weight
    bottom = bottom_left + (bottom_right - bottom_left) * x_weight
    blended = top + (bottom - top) * y_weight

    return np.clip(np.rint(blended), 0, 255).astype(np.uint8)


def pad_offsets(scaled_width: int, scaled_height: int, target: int) -> Tuple[int, int]:
    """Floor-divided centering offsets (x, y) on a ``target`` square."""
    return (target - scaled_width) // 2, (target - scaled_height) // 2


def pad_to_square(image: np.ndarray, target: int) -> np.ndarray:
    """Composite an RGBA image centered on an opaque white square canvas."""
    height, width = image.shape[:2]
    canvas = np.full((target, target, 4), 255, dtype=np.uint8)
    offset_x, offset_y = pad_offsets(width, height, target)
    canvas[offset_y:offset_y + height, offset_x:offset_x + width] = image
    return canvas


def to_greyscale(image: np.ndarray) -> np.ndarray:
    """
    Desaturate an RGBA array.

    R, G and B all become ``round(0.299 r + 0.587 g + 0.114 b)`` (half up);
    alpha is copied unchanged. The input is not modified.
    """
    out = image.copy()
    rgb = image[..., :3].astype(np.float64)
    r_w, g_w, b_w = LUMA_WEIGHTS
    luma = np.floor(r_w * rgb[..., 0] + g_w * rgb[..., 1] + b_w * rgb[..., 2] + 0.5)
    luma = np.clip(luma, 0, 255).astype(np.uint8)
    out[..., 0] = luma
    out[..., 1] = luma
    out[..., 2] = luma
    return out


def encode_jpeg(image: np.ndarray, quality: int = 95) -> bytes:
    """Encode an RGBA array as JPEG (alpha is dropped by the codec)."""
    buffer = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(image)).convert("RGB").save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def letterbox_greyscale(
    data: bytes,
    content_type: str,
    target: int = 1024,
    quality: int = 95
) -> bytes:
    """Full local fallback: decode, fit, pad, desaturate, encode."""
    source = decode_rgba(data, content_type)
    src_height, src_width = source.shape[:2]

    scaled_w, scaled_h = scaled_dimensions(src_width, src_height, target)
    resized = bilinear_resize(source, scaled_w, scaled_h)
    padded = pad_to_square(resized, target)
    return encode_jpeg(to_greyscale(padded), quality=quality)


def probe_dimensions(data: bytes) -> Tuple[int, int]:
    """Read (width, height) from the image header without decoding pixels."""
    with Image.open(io.BytesIO(data)) as image:
        return image.size
