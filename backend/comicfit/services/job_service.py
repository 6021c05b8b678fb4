"""Servicio simple en memoria para gestionar Jobs.

Esta clase actúa como una pequeña capa de persistencia. Además de los jobs,
guarda una señal de cancelación por job que el pipeline consulta entre
páginas.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List, Optional
from uuid import uuid4

from comicfit.core.enums import JobStatus
from comicfit.models.config import ProcessingConfig
from comicfit.models.job import Job


class JobService:
    """
    Gestión de jobs. MVP: almacenamiento en memoria.
    Más adelante se puede sustituir por BD persistente.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._cancel_events: Dict[str, threading.Event] = {}

    def create_job(
        self,
        input_path: Path,
        config: ProcessingConfig | None = None,
        title: str = "",
    ) -> Job:
        """Crea un job nuevo y lo guarda en el diccionario interno."""
        job_id = str(uuid4())
        job = Job(
            id=job_id,
            input_path=input_path,
            config=config or ProcessingConfig(),
            title=title,
            status=JobStatus.UPLOADED,
        )
        self._jobs[job_id] = job
        self._cancel_events[job_id] = threading.Event()
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        """Devuelve un job por id o None si no existe."""
        return self._jobs.get(job_id)

    def update_job(self, job: Job) -> None:
        # En un futuro, aquí iría la persistencia real (DB).
        self._jobs[job.id] = job

    def list_jobs(self) -> List[Job]:
        """Listado sencillo para depuración o endpoints futuros."""
        return list(self._jobs.values())

    def cancel_event(self, job_id: str) -> threading.Event:
        """Señal de cancelación del job (se crea si no existía)."""
        return self._cancel_events.setdefault(job_id, threading.Event())

    def request_cancel(self, job_id: str) -> bool:
        """Pide cancelar un job; devuelve False si el job no existe."""
        if job_id not in self._jobs:
            return False
        self.cancel_event(job_id).set()
        return True

    def reset_cancel(self, job_id: str) -> None:
        """Limpia la señal para que el job pueda volver a procesarse."""
        event = self._cancel_events.get(job_id)
        if event is not None:
            event.clear()
