from __future__ import annotations

"""Modelos relacionados con páginas individuales, antes y después de procesar."""

from pydantic import BaseModel, ConfigDict, Field

from comicfit.core.enums import ImageFormat


class RawPage(BaseModel):
    """
    Página tal y como viene en el archivo (JPEG/PNG/...), sin decodificar.
    """

    index: int = Field(ge=0)  # 0-based, posición entre las entradas de imagen
    name: str = ""  # Ruta de la entrada dentro del archivo
    data: bytes

    model_config = ConfigDict(frozen=True)

    def __repr__(self) -> str:
        return f"RawPage(index={self.index}, name={self.name!r}, size={len(self.data)})"


class ProcessedPage(BaseModel):
    """
    Imagen final lista para empaquetar. Un mismo `source_index` puede producir
    varias (spreads divididos/rotados); `sub_index` las ordena.
    """

    source_index: int = Field(ge=0)
    sub_index: int = Field(default=0, ge=0)
    file_name: str
    data: bytes
    width: int
    height: int
    format: ImageFormat

    model_config = ConfigDict(frozen=True)

    @property
    def dimensions(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def sort_key(self) -> tuple[int, int]:
        return self.source_index, self.sub_index

    def __repr__(self) -> str:
        return (
            f"ProcessedPage({self.source_index}.{self.sub_index}, {self.file_name!r}, "
            f"{self.width}x{self.height}, {len(self.data)} bytes)"
        )
