"""Definición del modelo de datos de un Job.

Un job representa una conversión completa (abrir archivo, procesar páginas,
ensamblar el contenedor y, si se pide, convertir a MOBI). Se almacena en
memoria, por lo que mantener los campos documentados ayuda a entender qué se
guarda y por qué cambia cada atributo durante el procesamiento.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from comicfit.core.enums import ConversionStatus, JobStatus, OutputFormat
from comicfit.models.config import ProcessingConfig


class Job(BaseModel):
    """Modelo principal que describe el estado de un trabajo."""

    id: str
    status: JobStatus = JobStatus.UPLOADED  # Estado actual en el ciclo de vida
    title: str = ""  # Título del cómic (por defecto, nombre del archivo)
    config: ProcessingConfig = Field(default_factory=ProcessingConfig)

    input_path: Path  # Ruta al archivo original subido
    output_path: Optional[Path] = None  # Se rellena al terminar el pipeline
    epub_path: Optional[Path] = None  # EPUB intermedio cuando la salida es MOBI

    num_pages: Optional[int] = None  # Páginas en el archivo de salida
    outcome: Optional[ConversionStatus] = None
    error_kind: Optional[str] = None  # `kind` de la excepción que lo tumbó
    error_message: Optional[str] = None  # Texto explicando por qué falló

    progress_current: int = 0  # Progreso actual (páginas procesadas)
    progress_total: Optional[int] = None  # Total esperado de páginas
    progress_stage: Optional[str] = None  # Paso del pipeline en curso

    # Métricas de tiempo por etapa (milisegundos)
    timing_import_ms: Optional[int] = None
    timing_process_ms: Optional[int] = None
    timing_assemble_ms: Optional[int] = None
    timing_convert_ms: Optional[int] = None

    # Estadísticas por página
    pages_total: int = 0
    pages_succeeded: int = 0
    pages_failed: int = 0
    failure_samples: list[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def output_format(self) -> OutputFormat:
        return self.config.output_format

    def mark_processing(self) -> None:
        """Marca el job como en proceso y refresca la marca temporal."""
        self.status = JobStatus.PROCESSING
        # Un job reprocesado no arrastra el resultado de la ejecución anterior
        self.outcome = None
        self.error_kind = None
        self.error_message = None
        self.updated_at = datetime.now(timezone.utc)

    def mark_completed(
        self,
        output_path: Path,
        num_pages: int,
        outcome: ConversionStatus = ConversionStatus.SUCCEEDED,
    ) -> None:
        """Marca el job como completado y guarda datos clave de salida."""
        self.status = JobStatus.COMPLETED
        self.output_path = output_path
        self.num_pages = num_pages
        self.outcome = outcome
        self.progress_stage = "completed"
        if self.progress_total is not None:
            self.progress_current = self.progress_total
        self.updated_at = datetime.now(timezone.utc)

    def mark_failed(self, error_message: str, error_kind: str | None = None) -> None:
        """Registra un fallo y almacena el mensaje de error mostrado al cliente."""
        self.status = JobStatus.FAILED
        self.outcome = ConversionStatus.FAILED
        self.error_message = error_message
        self.error_kind = error_kind
        self.progress_stage = "failed"
        self.updated_at = datetime.now(timezone.utc)
