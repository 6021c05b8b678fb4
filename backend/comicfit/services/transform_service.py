from __future__ import annotations

"""Procesado de una página: recorte, spreads, ajuste al dispositivo y color.

Todo el módulo son funciones puras sobre `(RawPage, ProcessingConfig)`: no
hay estado compartido entre páginas, por eso el scheduler puede lanzar
`transform_page` en paralelo sin ningún lock.
"""

import io
import logging
import math
import re
from functools import lru_cache
from pathlib import PurePosixPath
from typing import Callable, List

from PIL import Image, ImageOps, ImageStat, UnidentifiedImageError

from comicfit.core.devices import Device
from comicfit.core.enums import (
    ImageFormat,
    MarginColor,
    PageErrorKind,
    ReadingDirection,
    SplitStrategy,
)
from comicfit.core.errors import PageError
from comicfit.models.config import ProcessingConfig
from comicfit.models.page import ProcessedPage, RawPage

# Firma que el scheduler espera de un transformador de páginas
PageTransformer = Callable[[RawPage, ProcessingConfig], List[ProcessedPage]]

# Píxeles de margen que se conservan alrededor del contenido al recortar
CROP_SAFETY_MARGIN = 2

logger = logging.getLogger(__name__)


# ---------- 1) Decodificar ----------


def decode(data: bytes, grayscale: bool = True) -> Image.Image:
    """
    Decodifica los bytes originales y normaliza el modo a `L` (e-ink) o `RGB`.
    Las transparencias se aplanan sobre blanco.
    """
    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            img = ImageOps.exif_transpose(src)
            img = _flatten_alpha(img)
            return img.convert("L" if grayscale else "RGB")
    except Image.DecompressionBombError as exc:
        raise PageError(str(exc), PageErrorKind.DECODE) from exc
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as exc:
        raise PageError(f"cannot decode image: {exc}", PageErrorKind.DECODE) from exc


def _flatten_alpha(img: Image.Image) -> Image.Image:
    has_alpha = img.mode in ("RGBA", "LA") or (
        img.mode == "P" and "transparency" in img.info
    )
    if not has_alpha:
        return img
    rgba = img.convert("RGBA")
    background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
    background.alpha_composite(rgba)
    return background.convert("RGB")


# ---------- 2) Auto-crop ----------


def line_variance(img: Image.Image, box: tuple[int, int, int, int]) -> float:
    """Varianza media (entre bandas) de los píxeles dentro de `box`."""
    stat = ImageStat.Stat(img.crop(box))
    return sum(stat.var) / len(stat.var)


def find_content_box(img: Image.Image, config: ProcessingConfig) -> tuple[int, int, int, int]:
    """
    Calcula la caja (left, top, right, bottom) que queda tras quitar los
    márgenes casi uniformes. Se escanea desde cada borde hacia dentro y se
    para en la primera línea cuya varianza alcanza el umbral, o cuando el
    contenido restante bajaría del mínimo configurado.
    """
    width, height = img.size
    threshold = config.crop_variance_threshold
    min_width = max(1, math.ceil(width * config.crop_min_content_ratio))
    min_height = max(1, math.ceil(height * config.crop_min_content_ratio))

    # Columnas (sobre toda la altura)
    left, right = 0, width
    while right - left > min_width and line_variance(img, (left, 0, left + 1, height)) < threshold:
        left += 1
    while right - left > min_width and line_variance(img, (right - 1, 0, right, height)) < threshold:
        right -= 1

    # Sólo recortamos un eje si al menos uno de sus márgenes merece la pena
    if left < config.crop_min_margin_px and width - right < config.crop_min_margin_px:
        left, right = 0, width

    # Filas (sobre el ancho ya recortado)
    top, bottom = 0, height
    while bottom - top > min_height and line_variance(img, (left, top, right, top + 1)) < threshold:
        top += 1
    while bottom - top > min_height and line_variance(img, (left, bottom - 1, right, bottom)) < threshold:
        bottom -= 1

    if top < config.crop_min_margin_px and height - bottom < config.crop_min_margin_px:
        top, bottom = 0, height

    return (
        max(0, left - CROP_SAFETY_MARGIN) if left else 0,
        max(0, top - CROP_SAFETY_MARGIN) if top else 0,
        min(width, right + CROP_SAFETY_MARGIN) if right < width else width,
        min(height, bottom + CROP_SAFETY_MARGIN) if bottom < height else height,
    )


def auto_crop(img: Image.Image, config: ProcessingConfig) -> Image.Image:
    """Quita márgenes uniformes; si no hay nada que quitar devuelve `img` tal cual."""
    box = find_content_box(img, config)
    if box == (0, 0, img.width, img.height):
        return img
    logger.debug("Auto-crop %sx%s -> box %s", img.width, img.height, box)
    return img.crop(box)


# ---------- 3) Spreads ----------


def is_spread(width: int, height: int, device: Device, factor: float) -> bool:
    """
    Una página es doble cuando su proporción ancho:alto supera la del
    dispositivo multiplicada por `factor`.
    """
    if height <= 0:
        return False
    return width / height > device.aspect_ratio * factor


def split_spread(img: Image.Image) -> tuple[Image.Image, Image.Image]:
    """Corta en vertical: izquierda [0, w//2) y derecha [w//2, w)."""
    width, height = img.size
    middle = width // 2
    return img.crop((0, 0, middle, height)), img.crop((middle, 0, width, height))


def rotate_spread(img: Image.Image, direction: ReadingDirection) -> Image.Image:
    """Gira 90° para dejar el lado largo en vertical (horario en RTL)."""
    if direction is ReadingDirection.RTL:
        return img.transpose(Image.Transpose.ROTATE_270)
    return img.transpose(Image.Transpose.ROTATE_90)


def apply_split_strategy(img: Image.Image, config: ProcessingConfig) -> List[Image.Image]:
    """
    Devuelve 1, 2 o 3 imágenes según la estrategia. Las mitades salen ya en
    orden de lectura (derecha primero en RTL).
    """
    strategy = config.split
    if strategy is SplitStrategy.NONE:
        return [img]
    if not is_spread(img.width, img.height, config.device, config.spread_aspect_factor):
        return [img]

    if strategy is SplitStrategy.ROTATE:
        return [rotate_spread(img, config.reading_direction)]

    left, right = split_spread(img)
    halves = [right, left] if config.right_to_left else [left, right]
    if strategy is SplitStrategy.SPLIT:
        return halves
    return [rotate_spread(img, config.reading_direction), *halves]


# ---------- 4) Redimensionar ----------


def resize_to_device(img: Image.Image, device: Device, upscale: bool = True) -> Image.Image:
    """Escala conservando la proporción para caber en el lienzo del dispositivo."""
    width, height = img.size
    target_w, target_h = device.dimensions
    ratio = min(target_w / width, target_h / height)

    if ratio >= 1.0 and not upscale:
        return img

    new_size = (
        max(1, min(target_w, round(width * ratio))),
        max(1, min(target_h, round(height * ratio))),
    )
    if new_size == img.size:
        return img

    # Lanczos conserva detalle al reducir; bicúbico suaviza al ampliar
    resample = Image.Resampling.LANCZOS if ratio < 1.0 else Image.Resampling.BICUBIC
    return img.resize(new_size, resample)


# ---------- 5) Márgenes ----------


def fill_margins(img: Image.Image, device: Device, margin_color: MarginColor) -> Image.Image:
    """Centra la imagen en un lienzo del tamaño del dispositivo si hay color."""
    luminance = margin_color.luminance
    if luminance is None or img.size == device.dimensions:
        return img

    fill = luminance if img.mode == "L" else (luminance,) * len(img.getbands())
    canvas = Image.new(img.mode, device.dimensions, fill)
    offset = ((device.width - img.width) // 2, (device.height - img.height) // 2)
    canvas.paste(img, offset)
    return canvas


# ---------- 6) Color ----------


@lru_cache(maxsize=64)
def color_lut(brightness: int, gamma: float) -> tuple[int, ...]:
    """Tabla de 256 valores: primero brillo aditivo, luego gamma, con clamp."""
    table = []
    for value in range(256):
        shifted = min(255, max(0, value + brightness))
        corrected = 255.0 * (shifted / 255.0) ** gamma
        table.append(min(255, max(0, round(corrected))))
    return tuple(table)


def adjust_colors(img: Image.Image, brightness: int, gamma: float) -> Image.Image:
    if brightness == 0 and abs(gamma - 1.0) < 0.01:
        return img
    lut = color_lut(brightness, round(gamma, 3))
    return img.point(list(lut) * len(img.getbands()))


# ---------- 7) Codificar ----------


def encode(img: Image.Image, config: ProcessingConfig) -> bytes:
    buffer = io.BytesIO()
    fmt = config.image_format
    try:
        if fmt is ImageFormat.JPEG:
            if img.mode not in ("L", "RGB"):
                img = img.convert("RGB")
            img.save(buffer, "JPEG", quality=config.quality, optimize=True)
        elif fmt is ImageFormat.PNG:
            img.save(buffer, "PNG", compress_level=config.png_compression.level)
        else:
            img.save(buffer, "WEBP", quality=config.quality)
    except (OSError, ValueError, KeyError) as exc:
        raise PageError(f"cannot encode {fmt.value}: {exc}", PageErrorKind.ENCODE) from exc
    return buffer.getvalue()


def output_file_name(raw: RawPage, sub_index: int, fmt: ImageFormat) -> str:
    """'chapter 1/p01.png' (índice 3) -> '0003_p01_000.jpg'."""
    stem = PurePosixPath(raw.name.replace("\\", "/")).stem if raw.name else "page"
    stem = re.sub(r"[^A-Za-z0-9._-]+", "_", stem).strip("_") or "page"
    return f"{raw.index:04d}_{stem}_{sub_index:03d}.{fmt.extension}"


# ---------- Pipeline completo de una página ----------


def transform_page(raw: RawPage, config: ProcessingConfig) -> List[ProcessedPage]:
    """
    decode -> auto-crop -> spreads -> resize -> márgenes -> color -> encode.

    Devuelve una o varias ProcessedPage que comparten `source_index`.
    """
    try:
        img = decode(raw.data, grayscale=config.grayscale)
        if config.auto_crop:
            img = auto_crop(img, config)

        pages: List[ProcessedPage] = []
        for sub_index, part in enumerate(apply_split_strategy(img, config)):
            part = resize_to_device(part, config.device, config.upscale)
            part = fill_margins(part, config.device, config.margin_color)
            part = adjust_colors(part, config.brightness, config.gamma)
            pages.append(
                ProcessedPage(
                    source_index=raw.index,
                    sub_index=sub_index,
                    file_name=output_file_name(raw, sub_index, config.image_format),
                    data=encode(part, config),
                    width=part.width,
                    height=part.height,
                    format=config.image_format,
                )
            )
    except PageError as exc:
        exc.source_index = raw.index
        raise
    except (OSError, ValueError, MemoryError) as exc:
        raise PageError(str(exc), PageErrorKind.PROCESS, raw.index) from exc

    logger.debug("Page %s -> %d output page(s)", raw.index, len(pages))
    return pages
