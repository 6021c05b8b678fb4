"""Reparte el procesado de páginas en un pool de hilos acotado.

El orden final no depende de qué worker termina antes: los resultados se
guardan por `source_index` en el hilo que recoge los futures y se ordenan
por `(source_index, sub_index)` al final.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from comicfit.core.config import get_settings
from comicfit.core.enums import PageErrorKind
from comicfit.core.errors import PageError, TooManyFailuresError
from comicfit.models.config import ProcessingConfig
from comicfit.models.page import ProcessedPage, RawPage
from comicfit.models.report import PageFailure, ProcessingReport
from comicfit.services.transform_service import PageTransformer, transform_page

ProgressCallback = Callable[[int, int], None]

logger = logging.getLogger(__name__)


@dataclass
class ScheduleResult:
    pages: List[ProcessedPage] = field(default_factory=list)
    report: ProcessingReport = field(default_factory=ProcessingReport)


def check_failures(report: ProcessingReport, max_failure_ratio: float | None) -> None:
    """
    Lanza TooManyFailuresError si fallaron todas las páginas o si el ratio de
    fallos supera el umbral. Un informe vacío no es un error aquí.
    """
    if report.total == 0 or report.failed == 0:
        return
    if report.succeeded == 0:
        raise TooManyFailuresError(report.failed, report.total)
    if max_failure_ratio is not None and report.failure_ratio > max_failure_ratio:
        raise TooManyFailuresError(report.failed, report.total, max_failure_ratio)


def default_worker_count() -> int:
    configured = get_settings().default_worker_count
    return configured or os.cpu_count() or 1


class PageScheduler:
    """
    Ejecuta un PageTransformer sobre cada RawPage con, como mucho,
    `worker_count + prefetch` páginas en vuelo a la vez.
    """

    def __init__(self, transform: PageTransformer = transform_page, prefetch: int | None = None) -> None:
        self.transform = transform
        self.prefetch = get_settings().scheduler_prefetch if prefetch is None else prefetch

    def run(
        self,
        pages: Iterable[RawPage],
        config: ProcessingConfig,
        worker_count: int | None = None,
        *,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
        max_failure_ratio: float | None = None,
    ) -> ScheduleResult:
        workers = worker_count or config.worker_count or default_worker_count()
        max_in_flight = workers + max(0, self.prefetch)

        results: Dict[int, List[ProcessedPage]] = {}
        failures: List[PageFailure] = []
        attempted = 0
        cancelled = False
        exhausted = False
        source = iter(pages)

        logger.info("Processing pages with %d workers (max %d in flight)", workers, max_in_flight)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="page-worker") as executor:
            in_flight: Dict[Future, RawPage] = {}

            while True:
                # 1) Rellenar hasta el límite de páginas en vuelo
                while not exhausted and not cancelled and len(in_flight) < max_in_flight:
                    if cancel_event is not None and cancel_event.is_set():
                        break
                    try:
                        raw = next(source)
                    except StopIteration:
                        exhausted = True
                        break
                    attempted += 1
                    in_flight[executor.submit(self.transform, raw, config)] = raw

                # 2) Cancelación: lo no empezado se descarta, lo que corre termina
                if not cancelled and cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    for future in in_flight:
                        future.cancel()
                    logger.warning("Cancellation requested; waiting for running pages")

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    raw = in_flight.pop(future)
                    if future.cancelled():
                        attempted -= 1
                        continue
                    try:
                        results[raw.index] = future.result()
                    except PageError as exc:
                        logger.warning("Page %s (%s) failed: %s", raw.index, raw.name, exc)
                        failures.append(
                            PageFailure(
                                source_index=raw.index,
                                name=raw.name,
                                kind=exc.page_kind,
                                message=exc.message,
                            )
                        )
                    except Exception as exc:
                        logger.exception("Unexpected error processing page %s", raw.index)
                        failures.append(
                            PageFailure(
                                source_index=raw.index,
                                name=raw.name,
                                kind=PageErrorKind.PROCESS,
                                message=f"{type(exc).__name__}: {exc}",
                            )
                        )
                    if on_progress is not None:
                        on_progress(len(results) + len(failures), attempted)

        ordered = sorted(
            (page for page_list in results.values() for page in page_list),
            key=lambda p: p.sort_key,
        )
        report = ProcessingReport(
            total=attempted,
            succeeded=len(results),
            failures=sorted(failures, key=lambda f: f.source_index),
            cancelled=cancelled,
        )
        logger.info("Page processing finished: %s", report.summary())

        if max_failure_ratio is not None and not cancelled:
            check_failures(report, max_failure_ratio)

        return ScheduleResult(pages=ordered, report=report)
