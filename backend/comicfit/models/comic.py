"""Agregado de nivel job: metadatos + páginas ya procesadas y ordenadas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator

from comicfit.core.devices import Device
from comicfit.core.enums import OutputFormat, ReadingDirection
from comicfit.models.page import ProcessedPage


class Comic(BaseModel):
    """
    Se crea una sola vez cuando todas las páginas están procesadas y lo
    consume exactamente un ensamblador. Es inmutable.
    """

    title: str
    device: Device
    reading_direction: ReadingDirection = ReadingDirection.LTR
    output_format: OutputFormat = OutputFormat.CBZ
    language: str = "en-US"
    pages: tuple[ProcessedPage, ...] = ()

    model_config = ConfigDict(frozen=True)

    @field_validator("pages")
    @classmethod
    def _sorted_pages(cls, pages: tuple[ProcessedPage, ...]) -> tuple[ProcessedPage, ...]:
        return tuple(sorted(pages, key=lambda p: p.sort_key))

    @property
    def right_to_left(self) -> bool:
        return self.reading_direction is ReadingDirection.RTL

    @property
    def num_pages(self) -> int:
        return len(self.pages)
