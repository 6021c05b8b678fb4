"""Instancias compartidas por los routers.

No hay base de datos: los jobs viven en memoria mientras el proceso está en
marcha, y el pipeline usa ese mismo `JobService` para ir guardando el
progreso y las señales de cancelación.
"""

from comicfit.services.job_service import JobService
from comicfit.services.pipeline_service import PipelineService

job_service = JobService()
pipeline_service = PipelineService(job_service=job_service)
