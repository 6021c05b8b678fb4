"""Construye un EPUB 3 de maquetación fija (una imagen por página) en memoria.

Orden de las entradas del ZIP:
1. `mimetype` sin comprimir (el formato exige que vaya primero),
2. `META-INF/container.xml`,
3. documentos de contenido (OPF, NCX, nav, portada, páginas),
4. imágenes, sin comprimir.
"""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List
from uuid import uuid4
from xml.sax.saxutils import escape, quoteattr

from comicfit.core.errors import AssemblyError
from comicfit.models.comic import Comic
from comicfit.models.page import ProcessedPage

MIMETYPE = "application/epub+zip"
OPF_PATH = "OEBPS/content.opf"

logger = logging.getLogger(__name__)


@dataclass
class _PageEntry:
    """Rutas (relativas a OEBPS/) de una página y su imagen."""

    number: int  # 1-based
    page: ProcessedPage

    @property
    def page_id(self) -> str:
        return f"page_{self.number:04d}"

    @property
    def image_id(self) -> str:
        return f"image_{self.number:04d}"

    @property
    def page_href(self) -> str:
        return f"Text/{self.page_id}.xhtml"

    @property
    def image_href(self) -> str:
        return f"Images/{self.image_id}.{self.page.format.extension}"


class EpubAssembler:
    """
    Genera container.xml, content.opf, toc.ncx, nav.xhtml, una página XHTML
    por imagen y (opcionalmente) una portada, y lo empaqueta todo en un único
    buffer ZIP.
    """

    def assemble(
        self,
        comic: Comic,
        *,
        include_cover: bool = True,
        identifier: str | None = None,
    ) -> bytes:
        if not comic.pages:
            raise AssemblyError("No pages to assemble into EPUB")

        keys = [page.sort_key for page in comic.pages]
        if len(set(keys)) != len(keys):
            raise AssemblyError("Duplicate (source_index, sub_index) pages in EPUB")

        entries = [_PageEntry(number=i, page=page) for i, page in enumerate(comic.pages, start=1)]
        uid = identifier or f"urn:uuid:{uuid4()}"

        documents: List[tuple[str, str]] = [
            ("META-INF/container.xml", container_xml()),
            (OPF_PATH, content_opf(comic, entries, uid, include_cover)),
            ("OEBPS/toc.ncx", toc_ncx(comic, entries, uid, include_cover)),
            ("OEBPS/nav.xhtml", nav_xhtml(comic, entries, include_cover)),
        ]
        if include_cover:
            documents.append(("OEBPS/cover.xhtml", cover_xhtml(comic, entries[0])))
        for entry in entries:
            documents.append((f"OEBPS/{entry.page_href}", page_xhtml(comic, entry)))

        images = [(f"OEBPS/{entry.image_href}", entry.page.data) for entry in entries]

        names = ["mimetype", *(name for name, _ in documents), *(name for name, _ in images)]
        if len(set(names)) != len(names):
            raise AssemblyError("Duplicate entry names in EPUB")

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr("mimetype", MIMETYPE, compress_type=zipfile.ZIP_STORED)
            for name, text in documents:
                zf.writestr(name, text.encode("utf-8"), compress_type=zipfile.ZIP_DEFLATED)
            for name, data in images:
                zf.writestr(name, data, compress_type=zipfile.ZIP_STORED)

        data = buffer.getvalue()
        logger.info(
            "Built EPUB '%s' with %d pages (%d bytes)", comic.title, len(entries), len(data)
        )
        return data


# ---------- Plantillas ----------


def container_xml() -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<container xmlns="urn:oasis:names:tc:opendocument:xmlns:container" version="1.0">
  <rootfiles>
    <rootfile full-path="{OPF_PATH}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def _image_style(comic: Comic, page: ProcessedPage) -> str:
    """Posición absoluta que centra la imagen en el lienzo del dispositivo."""
    canvas_w, canvas_h = comic.device.dimensions
    scale = min(1.0, canvas_w / page.width, canvas_h / page.height)
    width = round(page.width * scale)
    height = round(page.height * scale)
    left = (canvas_w - width) // 2
    top = (canvas_h - height) // 2
    return (
        f"position:absolute;left:{left}px;top:{top}px;"
        f"width:{width}px;height:{height}px;margin:0;padding:0;"
    )


def _fixed_layout_document(comic: Comic, title: str, image_src: str, page: ProcessedPage) -> str:
    canvas_w, canvas_h = comic.device.dimensions
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
<head>
  <title>{escape(title)}</title>
  <meta name="viewport" content="width={canvas_w}, height={canvas_h}"/>
  <style>body {{ margin: 0; padding: 0; width: {canvas_w}px; height: {canvas_h}px; }}</style>
</head>
<body>
  <div>
    <img src={quoteattr(image_src)} alt={quoteattr(title)} style="{_image_style(comic, page)}"/>
  </div>
</body>
</html>
"""


def page_xhtml(comic: Comic, entry: _PageEntry) -> str:
    return _fixed_layout_document(
        comic, f"Page {entry.number}", f"../{entry.image_href}", entry.page
    )


def cover_xhtml(comic: Comic, first: _PageEntry) -> str:
    return _fixed_layout_document(comic, "Cover", first.image_href, first.page)


def content_opf(comic: Comic, entries: List[_PageEntry], uid: str, include_cover: bool) -> str:
    width, height = comic.device.dimensions
    rtl = comic.right_to_left
    modified = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    writing_mode = "horizontal-rl" if rtl else "horizontal-lr"
    progression = "rtl" if rtl else "ltr"

    manifest = [
        '<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>',
        '<item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>',
    ]
    if include_cover:
        manifest.append('<item id="cover" href="cover.xhtml" media-type="application/xhtml+xml"/>')
    for entry in entries:
        manifest.append(
            f'<item id="{entry.page_id}" href="{entry.page_href}" media-type="application/xhtml+xml"/>'
        )
    for entry in entries:
        cover_prop = ' properties="cover-image"' if entry.number == 1 else ""
        manifest.append(
            f'<item id="{entry.image_id}" href="{entry.image_href}" '
            f'media-type="{entry.page.format.media_type}"{cover_prop}/>'
        )

    spine = []
    content_entries = entries
    if include_cover:
        # La portada ya muestra la primera imagen; su página queda fuera del flujo lineal
        spine.append('<itemref idref="cover" properties="rendition:page-spread-center"/>')
        spine.append(f'<itemref idref="{entries[0].page_id}" linear="no"/>')
        content_entries = entries[1:]

    right_side = rtl
    for entry in content_entries:
        side = "page-spread-right" if right_side else "page-spread-left"
        spine.append(f'<itemref idref="{entry.page_id}" properties="{side}"/>')
        right_side = not right_side

    manifest_xml = "\n    ".join(manifest)
    spine_xml = "\n    ".join(spine)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="BookID" prefix="rendition: http://www.idpf.org/vocab/rendition/#">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:title>{escape(comic.title)}</dc:title>
    <dc:language>{escape(comic.language)}</dc:language>
    <dc:identifier id="BookID">{escape(uid)}</dc:identifier>
    <dc:creator>comicfit</dc:creator>
    <meta property="dcterms:modified">{modified}</meta>
    <meta property="rendition:layout">pre-paginated</meta>
    <meta property="rendition:spread">landscape</meta>
    <meta property="rendition:orientation">auto</meta>
    <meta name="cover" content="{entries[0].image_id}"/>
    <meta name="fixed-layout" content="true"/>
    <meta name="original-resolution" content="{width}x{height}"/>
    <meta name="book-type" content="comic"/>
    <meta name="primary-writing-mode" content="{writing_mode}"/>
    <meta name="zero-gutter" content="true"/>
    <meta name="zero-margin" content="true"/>
    <meta name="ke-border-color" content="#000000"/>
    <meta name="ke-border-width" content="0"/>
    <meta name="orientation-lock" content="none"/>
    <meta name="region-mag" content="true"/>
  </metadata>
  <manifest>
    {manifest_xml}
  </manifest>
  <spine toc="ncx" page-progression-direction="{progression}">
    {spine_xml}
  </spine>
</package>
"""


def toc_ncx(comic: Comic, entries: List[_PageEntry], uid: str, include_cover: bool) -> str:
    points = []
    targets = []
    if include_cover:
        targets.append(("cover", "Cover", "cover.xhtml"))
    for entry in entries:
        targets.append((entry.page_id, f"Page {entry.number}", entry.page_href))

    for order, (point_id, label, href) in enumerate(targets, start=1):
        points.append(
            f"""    <navPoint id="nav-{point_id}" playOrder="{order}">
      <navLabel><text>{label}</text></navLabel>
      <content src="{href}"/>
    </navPoint>"""
        )

    nav_points = "\n".join(points)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1" xml:lang="{escape(comic.language)}">
  <head>
    <meta name="dtb:uid" content={quoteattr(uid)}/>
    <meta name="dtb:depth" content="1"/>
    <meta name="dtb:totalPageCount" content="0"/>
    <meta name="dtb:maxPageNumber" content="0"/>
  </head>
  <docTitle><text>{escape(comic.title)}</text></docTitle>
  <navMap>
{nav_points}
  </navMap>
</ncx>
"""


def nav_xhtml(comic: Comic, entries: List[_PageEntry], include_cover: bool) -> str:
    direction = comic.reading_direction.value
    items = []
    if include_cover:
        items.append('<li><a href="cover.xhtml">Cover</a></li>')
    for entry in entries:
        items.append(f'<li><a href="{entry.page_href}">Page {entry.number}</a></li>')
    items_xml = "\n        ".join(items)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" dir="{direction}">
<head>
  <title>{escape(comic.title)}</title>
</head>
<body>
  <nav epub:type="toc" id="toc">
    <h1>{escape(comic.title)}</h1>
    <ol>
        {items_xml}
    </ol>
  </nav>
</body>
</html>
"""
