"""Configuración inmutable de una conversión.

Se construye una vez por job (desde la API o desde quien llame al pipeline)
y se pasa tal cual a cada worker. Nunca se muta durante el procesamiento.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from comicfit.core.devices import Device, default_device, get_preset
from comicfit.core.enums import (
    ImageFormat,
    MarginColor,
    OutputFormat,
    PngCompression,
    ReadingDirection,
    SplitStrategy,
)


class ProcessingConfig(BaseModel):
    """Parámetros de procesamiento de páginas y del contenedor de salida."""

    device: Device = Field(default_factory=default_device)
    output_format: OutputFormat = OutputFormat.MOBI
    image_format: ImageFormat = ImageFormat.JPEG
    quality: int = Field(default=85, ge=0, le=100)  # JPEG / WebP
    png_compression: PngCompression = PngCompression.DEFAULT

    split: SplitStrategy = SplitStrategy.ROTATE_SPLIT
    reading_direction: ReadingDirection = ReadingDirection.RTL
    auto_crop: bool = True
    brightness: int = Field(default=-10, ge=-100, le=100)
    gamma: float = Field(default=1.8, ge=0.1, le=3.0)
    margin_color: MarginColor = MarginColor.NONE
    grayscale: bool = True  # pantallas e-ink
    upscale: bool = True  # ampliar páginas pequeñas hasta llenar el lienzo

    worker_count: int | None = Field(default=None, ge=1)

    # Constantes de calibración (ajustables contra escaneos reales)
    crop_variance_threshold: float = Field(default=60.0, ge=0.0)
    crop_min_content_ratio: float = Field(default=0.5, gt=0.0, le=1.0)
    crop_min_margin_px: int = Field(default=10, ge=0)
    spread_aspect_factor: float = Field(default=1.5, gt=0.0)

    model_config = ConfigDict(frozen=True)

    @field_validator("device", mode="before")
    @classmethod
    def _device_from_preset(cls, value: Any) -> Any:
        # Permite `"device": "kobo-sage"` en el JSON de la API
        if isinstance(value, str):
            return get_preset(value)
        return value

    @property
    def right_to_left(self) -> bool:
        return self.reading_direction is ReadingDirection.RTL

    @property
    def device_dimensions(self) -> tuple[int, int]:
        return self.device.dimensions
