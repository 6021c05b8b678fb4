"""Taxonomía de errores del conversor.

Cada excepción lleva un `kind` corto que se copia tal cual en los resultados
y en los jobs (`error_kind`), de forma que el cliente pueda distinguir un
archivo ilegible de un fallo de KindleGen sin parsear mensajes.
"""

from __future__ import annotations

from comicfit.core.enums import PageErrorKind


class ComicfitError(Exception):
    """Base de todos los errores esperables del pipeline."""

    kind = "error"


class ArchiveError(ComicfitError):
    """El archivo de entrada no se puede abrir o no contiene imágenes."""

    kind = "archive"


class PageError(ComicfitError):
    """Fallo al procesar una única página (no fatal por sí mismo)."""

    kind = "page"

    def __init__(
        self,
        message: str,
        page_kind: PageErrorKind = PageErrorKind.PROCESS,
        source_index: int | None = None,
    ) -> None:
        self.message = message
        self.page_kind = page_kind
        self.source_index = source_index
        super().__init__(f"{page_kind.value}: {message}")


class PipelineError(ComicfitError):
    kind = "pipeline"


class TooManyFailuresError(PipelineError):
    """Demasiadas páginas fallidas para considerar válido el resultado."""

    kind = "too_many_failures"

    def __init__(self, failed: int, total: int, max_ratio: float | None = None) -> None:
        self.failed = failed
        self.total = total
        self.max_ratio = max_ratio
        if max_ratio is None:
            detail = "all pages failed"
        else:
            detail = f"failure ratio above {max_ratio:.0%}"
        super().__init__(f"{failed} of {total} pages failed ({detail})")


class PipelineCancelledError(PipelineError):
    kind = "cancelled"


class AssemblyError(ComicfitError):
    """Invariante rota al construir el contenedor (CBZ/EPUB)."""

    kind = "assembly"


class ExternalToolError(ComicfitError):
    """El binario externo (KindleGen) no está disponible."""

    kind = "external_tool"

    def __init__(self, tool: str, message: str | None = None) -> None:
        self.tool = tool
        super().__init__(message or f"{tool} was not found in PATH")


class ConversionError(ComicfitError):
    """El binario externo terminó con error."""

    kind = "conversion"

    def __init__(self, message: str, returncode: int | None = None, output: str = "") -> None:
        self.returncode = returncode
        self.output = output
        super().__init__(message)
