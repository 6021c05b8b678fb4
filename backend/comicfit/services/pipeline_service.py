from __future__ import annotations

import logging
import threading
from pathlib import Path
from time import perf_counter
from typing import Callable, Optional

from comicfit.core.config import get_settings
from comicfit.core.enums import ConversionStatus, OutputFormat
from comicfit.core.errors import (
    ComicfitError,
    ConversionError,
    ExternalToolError,
    PipelineCancelledError,
)
from comicfit.models.comic import Comic
from comicfit.models.config import ProcessingConfig
from comicfit.models.job import Job
from comicfit.models.report import ConversionResult, ProcessingReport
from comicfit.services.archive_service import ArchiveSource
from comicfit.services.export_service import ExportService
from comicfit.services.job_service import JobService
from comicfit.services.mobi_service import MobiConverter
from comicfit.services.scheduler_service import PageScheduler, check_failures

StageCallback = Callable[[str], None]
ProgressCallback = Callable[[int, int], None]

logger = logging.getLogger(__name__)


def _elapsed_ms(started_at: float) -> int:
    return int((perf_counter() - started_at) * 1000)


class PipelineService:
    """
    Orquesta una conversión completa:
    archivo -> páginas procesadas en paralelo -> CBZ/EPUB -> (MOBI).

    `convert` es el punto de entrada del núcleo (recibe la configuración ya
    resuelta); `run_pipeline` lo envuelve con el seguimiento de un Job.
    """

    def __init__(
        self,
        job_service: JobService | None = None,
        scheduler: PageScheduler | None = None,
        export_service: ExportService | None = None,
        mobi_converter: MobiConverter | None = None,
    ) -> None:
        settings = get_settings()
        # directorio raíz donde se guardan los jobs, p.ej: data/jobs
        self.data_dir: Path = settings.data_dir
        self.max_failure_ratio = settings.max_failure_ratio
        self.job_service = job_service or JobService()

        self.scheduler = scheduler or PageScheduler()
        self.export_service = export_service or ExportService()
        self.mobi_converter = mobi_converter or MobiConverter()

    # ---------- NÚCLEO DEL PIPELINE ----------

    def convert(
        self,
        source: Path | str | bytes,
        config: ProcessingConfig,
        *,
        title: str | None = None,
        output_path: Path | None = None,
        cancel_event: Optional[threading.Event] = None,
        on_stage: Optional[StageCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ConversionResult:
        """
        Convierte un cómic y devuelve un ConversionResult para cualquier
        desenlace esperable (éxito, éxito con páginas fallidas o fallo con su
        `error_kind`). Los errores inesperados se propagan.
        """
        fmt = config.output_format
        if fmt == OutputFormat.MOBI and output_path is None:
            raise ValueError("output_path is required for MOBI output")

        if isinstance(source, str):
            source = Path(source)
        if not title:
            title = source.stem if isinstance(source, Path) else "Comic"

        def stage(name: str) -> None:
            logger.info("[%s] stage: %s", title, name)
            if on_stage is not None:
                on_stage(name)

        timings: dict[str, int] = {}
        report = ProcessingReport()

        try:
            # 1) Abrir archivo
            stage("import")
            started_at = perf_counter()
            with ArchiveSource(source) as archive:
                total = archive.num_images
                timings["import"] = _elapsed_ms(started_at)

                def page_done(done: int, _attempted: int) -> None:
                    if on_progress is not None:
                        on_progress(done, total)

                # 2) Procesar páginas
                stage("process")
                started_at = perf_counter()
                scheduled = self.scheduler.run(
                    archive.pages(),
                    config,
                    cancel_event=cancel_event,
                    on_progress=page_done,
                )
                report = scheduled.report.with_failures(archive.failures)
            timings["process"] = _elapsed_ms(started_at)

            if report.cancelled:
                raise PipelineCancelledError(f"Conversion cancelled ({report.summary()})")
            check_failures(report, self.max_failure_ratio)

            # 3) Ensamblar
            stage("assemble")
            started_at = perf_counter()
            comic = Comic(
                title=title,
                device=config.device,
                reading_direction=config.reading_direction,
                output_format=fmt,
                pages=tuple(scheduled.pages),
            )
            data = self.export_service.assemble(comic)
            if fmt != OutputFormat.MOBI and output_path is not None:
                self.export_service.write(data, output_path)
            timings["assemble"] = _elapsed_ms(started_at)
        except ComicfitError as exc:
            logger.error("Conversion of '%s' failed (%s): %s", title, exc.kind, exc)
            return self._failed(fmt, title, report, exc, timings)

        status = (
            ConversionStatus.SUCCEEDED
            if report.failed == 0
            else ConversionStatus.SUCCEEDED_WITH_FAILURES
        )
        result = ConversionResult(
            status=status,
            output_format=fmt,
            title=title,
            num_pages=comic.num_pages,
            report=report,
            timings_ms=timings,
        )

        if fmt != OutputFormat.MOBI:
            result.data = data
            result.output_path = output_path
            logger.info("Converted '%s': %s", title, report.summary())
            return result

        # 4) EPUB -> MOBI con el binario externo
        stage("convert")
        started_at = perf_counter()
        result.epub_data = data
        try:
            self.mobi_converter.convert(data, output_path)
        except (ExternalToolError, ConversionError) as exc:
            result.timings_ms["convert"] = _elapsed_ms(started_at)
            logger.error("MOBI conversion of '%s' failed: %s", title, exc)
            # El EPUB ya generado sigue siendo válido: lo dejamos en disco
            result.epub_path = self.export_service.write(data, output_path.with_suffix(".epub"))
            result.status = ConversionStatus.FAILED
            result.error_kind = exc.kind
            result.error_message = str(exc)
            result.error = exc
            return result

        result.timings_ms["convert"] = _elapsed_ms(started_at)
        result.output_path = output_path
        logger.info("Converted '%s' to MOBI: %s", title, report.summary())
        return result

    @staticmethod
    def _failed(
        fmt: OutputFormat,
        title: str,
        report: ProcessingReport,
        exc: ComicfitError,
        timings: dict[str, int],
    ) -> ConversionResult:
        return ConversionResult(
            status=ConversionStatus.FAILED,
            output_format=fmt,
            title=title,
            report=report,
            error_kind=exc.kind,
            error_message=str(exc),
            error=exc,
            timings_ms=timings,
        )

    # ---------- PIPELINE CON SEGUIMIENTO DE JOB ----------

    def run_pipeline(self, job: Job) -> Job:
        """
        Ejecuta `convert` para un Job, guardando en él la etapa actual, el
        progreso por página, los contadores y los tiempos de cada etapa.
        """

        # Carpeta de trabajo concreta del job
        job_dir = self.data_dir / job.id
        job_dir.mkdir(parents=True, exist_ok=True)
        output_path = job_dir / f"output.{job.output_format.value}"

        # Marcar como en proceso
        job.mark_processing()
        job.progress_stage = "import"
        job.progress_current = 0
        job.progress_total = None
        self.job_service.update_job(job)

        def on_stage(stage: str) -> None:
            job.progress_stage = stage
            self.job_service.update_job(job)

        def on_progress(done: int, total: int) -> None:
            job.progress_current = done
            job.progress_total = total
            self.job_service.update_job(job)

        try:
            result = self.convert(
                job.input_path,
                job.config,
                title=job.title or None,
                output_path=output_path,
                cancel_event=self.job_service.cancel_event(job.id),
                on_stage=on_stage,
                on_progress=on_progress,
            )
        except Exception as e:
            # Marcamos el job como fallido y relanzamos
            job.mark_failed(str(e))
            self.job_service.update_job(job)
            raise
        finally:
            # Una cancelación sólo afecta a esta ejecución
            self.job_service.reset_cancel(job.id)

        report = result.report
        job.title = result.title
        job.pages_total = report.total
        job.pages_succeeded = report.succeeded
        job.pages_failed = report.failed
        job.failure_samples = report.sample_messages()
        job.timing_import_ms = result.timings_ms.get("import")
        job.timing_process_ms = result.timings_ms.get("process")
        job.timing_assemble_ms = result.timings_ms.get("assemble")
        job.timing_convert_ms = result.timings_ms.get("convert")
        job.epub_path = result.epub_path

        if result.ok:
            job.mark_completed(
                output_path=output_path,
                num_pages=result.num_pages,
                outcome=result.status,
            )
        else:
            job.mark_failed(result.error_message or "conversion failed", result.error_kind)
        self.job_service.update_job(job)

        return job

    # ---------- API USADA POR EL ENDPOINT (/jobs/{job_id}/process) ----------

    def process_job(self, job_id: str) -> Job:
        """
        Busca el job por id y ejecuta el pipeline completo.
        """

        job = self.job_service.get_job(job_id)
        if not job:
            raise ValueError(f"Job not found: {job_id}")

        return self.run_pipeline(job)

    def process_job_background(self, job_id: str) -> None:
        """Run the pipeline in a background task, logging failures safely."""

        try:
            self.process_job(job_id)
        except Exception:
            logging.exception("Background job %s failed", job_id)
