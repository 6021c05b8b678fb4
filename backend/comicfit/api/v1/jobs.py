from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, File, Form, HTTPException, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import ValidationError

from comicfit.core.config import get_settings
from comicfit.core.enums import JobStatus, OutputFormat
from comicfit.core.errors import ConversionError, ExternalToolError
from comicfit.models.config import ProcessingConfig
from comicfit.models.job import Job
from comicfit.services.archive_service import ARCHIVE_EXTENSIONS
from comicfit.services.job_store import job_service, pipeline_service

router = APIRouter(prefix="/jobs", tags=["jobs"])

settings = get_settings()

# Errores de la etapa MOBI tras los que el EPUB intermedio sigue disponible
MOBI_STAGE_ERRORS = (ExternalToolError.kind, ConversionError.kind)


def detect_archive_extension(filename: str | None) -> str:
    """
    Devuelve la extensión del archivo subido si es un cómic soportado
    (CBZ/ZIP o CBR/RAR); cualquier otra cosa es un 400.
    """
    ext = (filename or "").lower().rsplit(".", 1)[-1]
    if f".{ext}" not in ARCHIVE_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported file type: {ext}",
        )
    return ext


def parse_config(raw: Optional[str]) -> ProcessingConfig:
    """El campo `config` del formulario es un JSON de ProcessingConfig."""
    if not raw:
        return ProcessingConfig()
    try:
        return ProcessingConfig.model_validate_json(raw)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False),
        )


def get_job_or_404(job_id: str) -> Job:
    job = job_service.get_job(job_id)
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found.",
        )
    return job


def job_summary(job: Job) -> dict:
    return {
        "job_id": job.id,
        "status": job.status,
        "title": job.title,
        "output_format": job.output_format,
        "device": job.config.device.name,
        "num_pages": job.num_pages,
        "outcome": job.outcome,
        "error_kind": job.error_kind,
        "error_message": job.error_message,
        "output_path": str(job.output_path) if job.output_path else None,
        "epub_path": str(job.epub_path) if job.epub_path else None,
        "progress_current": job.progress_current,
        "progress_total": job.progress_total,
        "progress_stage": job.progress_stage,
        "timing_import_ms": job.timing_import_ms,
        "timing_process_ms": job.timing_process_ms,
        "timing_assemble_ms": job.timing_assemble_ms,
        "timing_convert_ms": job.timing_convert_ms,
        "pages_total": job.pages_total,
        "pages_succeeded": job.pages_succeeded,
        "pages_failed": job.pages_failed,
        "failure_samples": job.failure_samples,
    }


@router.post("", summary="Upload a comic archive and create a conversion job")
async def create_job(
    file: UploadFile = File(...),
    config: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
) -> dict:
    input_ext = detect_archive_extension(file.filename)
    processing_config = parse_config(config)

    file_bytes = await file.read()
    if not file_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded file is empty.",
        )

    # Título por defecto: nombre del archivo sin extensión
    if not title:
        title = Path(file.filename or "").stem

    job: Job = job_service.create_job(
        input_path=Path(""),
        config=processing_config,
        title=title,
    )

    # Carpeta del job
    job_dir = settings.data_dir / job.id
    job_dir.mkdir(parents=True, exist_ok=True)

    # Guardar archivo subido
    input_path = job_dir / f"input.{input_ext}"
    with open(input_path, "wb") as f:
        f.write(file_bytes)

    job.input_path = input_path
    job_service.update_job(job)

    return job_summary(job)


@router.get("/{job_id}", summary="Get job status")
async def get_job_status(job_id: str) -> dict:
    return job_summary(get_job_or_404(job_id))


@router.post(
    "/{job_id}/process",
    summary="Process a job asynchronously",
    status_code=status.HTTP_202_ACCEPTED,
)
async def process_job(job_id: str, background_tasks: BackgroundTasks) -> dict:
    job = get_job_or_404(job_id)

    if job.status in (JobStatus.QUEUED, JobStatus.PROCESSING):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job is already being processed.",
        )

    # Una cancelación anterior no debe afectar a la nueva ejecución
    job_service.reset_cancel(job_id)
    job.status = JobStatus.QUEUED
    job.progress_stage = "queued"
    job.progress_current = 0
    job.progress_total = None
    job_service.update_job(job)

    background_tasks.add_task(pipeline_service.process_job_background, job_id)

    return job_summary(job)


@router.post("/{job_id}/cancel", summary="Request cancellation of a running job")
async def cancel_job(job_id: str) -> dict:
    job = get_job_or_404(job_id)
    job_service.request_cancel(job_id)
    return job_summary(job)


@router.get("/{job_id}/download", summary="Download converted file")
async def download_job_output(job_id: str):
    job = get_job_or_404(job_id)
    fmt = job.output_format

    if job.status == JobStatus.COMPLETED and job.output_path:
        output_path = Path(job.output_path)
    elif job.error_kind in MOBI_STAGE_ERRORS and job.epub_path:
        # Falló KindleGen: servimos el EPUB que sí se generó
        output_path = Path(job.epub_path)
        fmt = OutputFormat.EPUB
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Job has no output yet.",
        )

    if not output_path.exists():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Output file not found on disk.",
        )

    return FileResponse(
        path=output_path,
        media_type=fmt.media_type,
        filename=f"{job.title or job.id}.{fmt.value}",
    )
