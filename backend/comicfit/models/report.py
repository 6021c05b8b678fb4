"""Informe de fallos por página y resultado final de una conversión."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from comicfit.core.enums import ConversionStatus, OutputFormat, PageErrorKind


class PageFailure(BaseModel):
    """Una página que no llegó a la salida, y por qué."""

    source_index: int
    name: str = ""
    kind: PageErrorKind = PageErrorKind.PROCESS
    message: str

    def describe(self) -> str:
        label = self.name or f"#{self.source_index}"
        return f"page {label} ({self.kind.value}): {self.message}"


class ProcessingReport(BaseModel):
    """
    Resumen agregado del procesamiento: cuántas páginas de origen se
    intentaron, cuántas salieron bien y cuáles fallaron.
    """

    total: int = 0
    succeeded: int = 0
    failures: list[PageFailure] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def failure_ratio(self) -> float:
        if self.total == 0:
            return 0.0
        return self.failed / self.total

    def with_failures(self, extra: list[PageFailure]) -> "ProcessingReport":
        """Añade fallos ocurridos antes del scheduler (lectura del archivo)."""
        if not extra:
            return self
        failures = sorted([*self.failures, *extra], key=lambda f: f.source_index)
        return self.model_copy(
            update={"failures": failures, "total": self.total + len(extra)}
        )

    def sample_messages(self, limit: int = 3) -> list[str]:
        return [failure.describe() for failure in self.failures[:limit]]

    def summary(self) -> str:
        text = f"{self.succeeded} succeeded, {self.failed} failed"
        if self.cancelled:
            text += " (cancelled)"
        return text


class ConversionResult(BaseModel):
    """Lo que devuelve `PipelineService.convert` para cualquier desenlace."""

    status: ConversionStatus
    output_format: OutputFormat
    title: str = ""
    data: Optional[bytes] = None  # bytes del CBZ/EPUB ensamblado
    epub_data: Optional[bytes] = None  # EPUB intermedio cuando se pide MOBI
    output_path: Optional[Path] = None
    epub_path: Optional[Path] = None  # EPUB guardado cuando falla la etapa MOBI
    num_pages: int = 0  # páginas en el contenedor de salida
    timings_ms: dict[str, int] = Field(default_factory=dict)
    report: ProcessingReport = Field(default_factory=ProcessingReport)
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    error: Optional[Exception] = Field(default=None, exclude=True, repr=False)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def ok(self) -> bool:
        return self.status is not ConversionStatus.FAILED

    def summary(self) -> str:
        if self.status is ConversionStatus.FAILED:
            return f"failed ({self.error_kind}): {self.error_message}; {self.report.summary()}"
        return self.report.summary()
