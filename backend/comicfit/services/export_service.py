from __future__ import annotations

import logging
from pathlib import Path

from comicfit.core.enums import OutputFormat
from comicfit.models.comic import Comic
from comicfit.services.cbz_assembler import CbzAssembler
from comicfit.services.epub_assembler import EpubAssembler

logger = logging.getLogger(__name__)


class ExportService:
    """
    Elige el ensamblador según el formato de salida y escribe el resultado.
    El conjunto de formatos es cerrado: CBZ usa CbzAssembler; EPUB y MOBI
    usan EpubAssembler (el MOBI se obtiene después a partir de ese EPUB).
    """

    def __init__(
        self,
        cbz_assembler: CbzAssembler | None = None,
        epub_assembler: EpubAssembler | None = None,
    ) -> None:
        self.cbz_assembler = cbz_assembler or CbzAssembler()
        self.epub_assembler = epub_assembler or EpubAssembler()

    def assemble(self, comic: Comic) -> bytes:
        """Devuelve los bytes del contenedor (CBZ o EPUB) de un Comic ya procesado."""
        if comic.output_format == OutputFormat.CBZ:
            return self.cbz_assembler.assemble(
                comic.pages,
                title=comic.title,
                reading_direction=comic.reading_direction,
            )
        if comic.output_format in (OutputFormat.EPUB, OutputFormat.MOBI):
            return self.epub_assembler.assemble(comic)
        raise ValueError(f"Unsupported OutputFormat: {comic.output_format}")

    def write(self, data: bytes, output_path: Path) -> Path:
        """Guarda el buffer en disco creando la carpeta si hace falta."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(data)
        logger.info("Wrote %s (%d bytes)", output_path, len(data))
        return output_path
