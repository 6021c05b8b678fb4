from __future__ import annotations

import io
import logging
import zipfile
from typing import Sequence
from xml.sax.saxutils import escape

from comicfit.core.enums import ReadingDirection
from comicfit.core.errors import AssemblyError
from comicfit.models.page import ProcessedPage

logger = logging.getLogger(__name__)


def cbz_entry_name(position: int, page: ProcessedPage) -> str:
    """Nombre de la entrada: índice 1-based con ceros + extensión del formato."""
    return f"page_{position:04d}.{page.format.extension}"


class CbzAssembler:
    """
    Empaqueta las páginas procesadas en un CBZ (ZIP) en memoria.

    Las imágenes ya vienen comprimidas por su propio códec, así que se guardan
    sin comprimir (`ZIP_STORED`), en orden de lectura.
    """

    def assemble(
        self,
        pages: Sequence[ProcessedPage],
        *,
        title: str | None = None,
        reading_direction: ReadingDirection | None = None,
    ) -> bytes:
        if not pages:
            raise AssemblyError("No pages to assemble into CBZ")

        keys = [page.sort_key for page in pages]
        if len(set(keys)) != len(keys):
            raise AssemblyError("Duplicate (source_index, sub_index) pages in CBZ")

        names = [cbz_entry_name(i, page) for i, page in enumerate(pages, start=1)]

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as zf:
            for name, page in zip(names, pages):
                zf.writestr(name, page.data)
            if title is not None:
                zf.writestr(
                    "ComicInfo.xml",
                    comic_info_xml(title, len(pages), reading_direction),
                    compress_type=zipfile.ZIP_DEFLATED,
                )

        data = buffer.getvalue()
        logger.info("Built CBZ with %d pages (%d bytes)", len(pages), len(data))
        return data


def comic_info_xml(title: str, page_count: int, reading_direction: ReadingDirection | None) -> str:
    """Metadatos mínimos que entienden los lectores de CBZ (ComicRack)."""
    manga = "YesAndRightToLeft" if reading_direction is ReadingDirection.RTL else "No"
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<ComicInfo xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
        'xmlns:xsd="http://www.w3.org/2001/XMLSchema">\n'
        f"  <Title>{escape(title)}</Title>\n"
        f"  <PageCount>{page_count}</PageCount>\n"
        f"  <Manga>{manga}</Manga>\n"
        "</ComicInfo>\n"
    )
