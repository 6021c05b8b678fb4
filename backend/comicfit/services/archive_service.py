from __future__ import annotations

import io
import logging
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Iterator, List

import rarfile
from natsort import natsorted, ns

from comicfit.core.enums import ArchiveKind, PageErrorKind
from comicfit.core.errors import ArchiveError
from comicfit.models.page import RawPage
from comicfit.models.report import PageFailure


# Extensiones de imagen que aceptaremos en cómics
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".gif", ".bmp"}

# Extensión -> tipo de contenedor
ARCHIVE_EXTENSIONS = {
    ".cbz": ArchiveKind.ZIP,
    ".zip": ArchiveKind.ZIP,
    ".cbr": ArchiveKind.RAR,
    ".rar": ArchiveKind.RAR,
}

ZIP_MAGICS = (b"PK\x03\x04", b"PK\x05\x06")
RAR_MAGIC = b"Rar!\x1a\x07"

# Basura típica que dejan macOS/Windows dentro de los cómics
SKIPPED_NAMES = ("__macosx", "thumbs.db", ".ds_store")

logger = logging.getLogger(__name__)


def is_image_entry(name: str) -> bool:
    """
    True si la entrada parece una página: extensión de imagen, no oculta y
    fuera de carpetas de metadatos del sistema.
    """
    path = PurePosixPath(name.replace("\\", "/"))
    lowered = name.lower()
    if any(skipped in lowered for skipped in SKIPPED_NAMES):
        return False
    if path.name.startswith("."):
        return False
    return path.suffix.lower() in IMAGE_EXTENSIONS


def detect_kind(source: Path | bytes) -> ArchiveKind:
    """
    Decide ZIP o RAR por extensión y, si no basta, por los bytes mágicos.
    """
    if isinstance(source, Path):
        kind = ARCHIVE_EXTENSIONS.get(source.suffix.lower())
        if kind is not None:
            return kind
        with open(source, "rb") as fh:
            head = fh.read(8)
    else:
        head = bytes(source[:8])

    if head.startswith(ZIP_MAGICS):
        return ArchiveKind.ZIP
    if head.startswith(RAR_MAGIC):
        return ArchiveKind.RAR
    raise ArchiveError("Unsupported archive format (expected cbz/zip/cbr/rar)")


class ArchiveSource:
    """
    Abre un cómic (CBZ/ZIP/CBR/RAR) y produce sus páginas como RawPage, en
    orden natural de nombre y sin extraer nada a disco.

    La secuencia es perezosa y de un solo uso: cada entrada se lee cuando el
    consumidor la pide. Las entradas ilegibles no detienen la lectura; se
    registran en `failures` y su índice queda consumido.
    """

    def __init__(self, source: Path | str | bytes, kind: ArchiveKind | None = None) -> None:
        self.source: Path | bytes = Path(source) if isinstance(source, str) else source
        self.kind = kind
        self.failures: List[PageFailure] = []
        self._archive: zipfile.ZipFile | rarfile.RarFile | None = None
        self._names: List[str] = []
        self._consumed = False

    # ---------- Ciclo de vida ----------

    def open(self) -> "ArchiveSource":
        if self._archive is not None:
            return self

        if isinstance(self.source, Path) and not self.source.exists():
            raise ArchiveError(f"Comic file not found: {self.source}")

        try:
            kind = self.kind or detect_kind(self.source)
        except OSError as exc:
            raise ArchiveError(f"Could not read {self.source}: {exc}") from exc
        self.kind = kind

        handle = self.source if isinstance(self.source, Path) else io.BytesIO(self.source)
        try:
            if kind == ArchiveKind.ZIP:
                archive = zipfile.ZipFile(handle, "r")
                names = [info.filename for info in archive.infolist() if not info.is_dir()]
            else:
                # rarfile necesita 'unrar' o 'bsdtar' instalado en el sistema
                archive = rarfile.RarFile(handle)
                names = [info.filename for info in archive.infolist() if not info.is_dir()]
        except (zipfile.BadZipFile, rarfile.Error, OSError, EOFError) as exc:
            raise ArchiveError(f"Failed to open {kind.value} archive: {exc}") from exc

        # Filtrar solo entradas que parecen imágenes
        # Orden natural: p2 antes que p10, sin distinguir mayúsculas
        image_names = natsorted((n for n in names if is_image_entry(n)), alg=ns.IGNORECASE)
        if not image_names:
            archive.close()
            raise ArchiveError("Archive contains no image entries")

        skipped = len(names) - len(image_names)
        if skipped:
            logger.debug("Skipping %d non-image entries", skipped)

        self._archive = archive
        self._names = image_names
        logger.info("Opened %s archive with %d pages", kind.value, len(image_names))
        return self

    def close(self) -> None:
        if self._archive is not None:
            self._archive.close()
            self._archive = None

    def __enter__(self) -> "ArchiveSource":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ---------- Lectura ----------

    @property
    def num_images(self) -> int:
        return len(self._names)

    def __len__(self) -> int:
        return self.num_images

    @property
    def entry_names(self) -> List[str]:
        return list(self._names)

    def pages(self) -> Iterator[RawPage]:
        """
        Generador de RawPage en orden de archivo. Sólo se puede recorrer una
        vez; para volver a leer hay que abrir de nuevo el archivo.
        """
        if self._archive is None:
            raise ArchiveError("Archive is not open")
        if self._consumed:
            raise ArchiveError("Archive pages were already consumed; reopen to read again")
        self._consumed = True
        return self._iter_pages(self._archive)

    def _iter_pages(self, archive: zipfile.ZipFile | rarfile.RarFile) -> Iterator[RawPage]:
        for idx, name in enumerate(self._names):
            try:
                data = archive.read(name)
            except (zipfile.BadZipFile, zlib.error, rarfile.Error, OSError, EOFError, NotImplementedError) as exc:
                logger.warning("Failed to read entry %s: %s", name, exc)
                self.failures.append(
                    PageFailure(
                        source_index=idx,
                        name=name,
                        kind=PageErrorKind.READ,
                        message=str(exc),
                    )
                )
                continue
            yield RawPage(index=idx, name=name, data=data)
