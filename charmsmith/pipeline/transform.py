"""Image transformation endpoint URL builder."""

from typing import Optional

# Order in which options appear in the comma-separated parameter list
_OPTION_ORDER = ("saturation", "width", "height", "fit", "background", "format")

FIT_MODES = ("pad", "cover", "contain", "scale-down")
FORMATS = ("jpeg", "png", "webp", "avif")


def build_transform_url(
    base_url: str,
    source_url: str,
    saturation: Optional[float] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    fit: Optional[str] = None,
    background: Optional[str] = None,
    format: Optional[str] = None,
) -> str:
    """
    Build ``<base>/<k=v,k=v,...>/<source_url>``.

    Options left as None are omitted. Numeric zero is kept
    (``saturation=0`` is the desaturation request).
    """
    if fit is not None and fit not in FIT_MODES:
        raise ValueError(f"Unsupported fit mode: {fit}")
    if format is not None and format not in FORMATS:
        raise ValueError(f"Unsupported format: {format}")

    values = {
        "saturation": saturation,
        "width": width,
        "height": height,
        "fit": fit,
        "background": background,
        "format": format,
    }
    params = ",".join(
        f"{key}={_render(values[key])}" for key in _OPTION_ORDER if values[key] is not None
    )
    return f"{base_url.rstrip('/')}/{params}/{source_url}"


def _render(value) -> str:
    # 0.0 -> "0", 1.5 -> "1.5"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
