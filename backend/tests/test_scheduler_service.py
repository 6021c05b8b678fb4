import random
import threading
import time

import pytest

from comicfit.core.enums import ImageFormat, PageErrorKind
from comicfit.core.errors import PageError, TooManyFailuresError
from comicfit.models.config import ProcessingConfig
from comicfit.models.page import ProcessedPage, RawPage
from comicfit.models.report import PageFailure, ProcessingReport
from comicfit.services.scheduler_service import PageScheduler, check_failures

CONFIG = ProcessingConfig(worker_count=4)


def raw_pages(count: int):
    for i in range(count):
        yield RawPage(index=i, name=f"p{i}.png", data=bytes([i % 256]))


def fake_page(raw: RawPage, sub_index: int = 0) -> ProcessedPage:
    return ProcessedPage(
        source_index=raw.index,
        sub_index=sub_index,
        file_name=f"{raw.index}_{sub_index}.png",
        data=raw.data,
        width=1,
        height=1,
        format=ImageFormat.PNG,
    )


class SlowTransform:
    """Latencia aleatoria por página para desordenar las finalizaciones."""

    def __init__(self, seed: int = 0, splits: int = 1) -> None:
        self.random = random.Random(seed)
        self.splits = splits
        self.lock = threading.Lock()
        self.finished = 0

    def __call__(self, raw, config):
        with self.lock:
            delay = self.random.uniform(0, 0.01)
        time.sleep(delay)
        pages = [fake_page(raw, sub) for sub in range(self.splits)]
        with self.lock:
            self.finished += 1
        return pages


class FailingTransform:
    def __init__(self, bad_indices, unexpected=()) -> None:
        self.bad_indices = set(bad_indices)
        self.unexpected = set(unexpected)

    def __call__(self, raw, config):
        if raw.index in self.unexpected:
            raise RuntimeError("boom")
        if raw.index in self.bad_indices:
            raise PageError("cannot decode image", PageErrorKind.DECODE, raw.index)
        return [fake_page(raw)]


def test_output_order_is_stable_under_random_latency():
    for seed in range(3):
        result = PageScheduler(SlowTransform(seed=seed, splits=2), prefetch=2).run(raw_pages(30), CONFIG)

        assert [p.sort_key for p in result.pages] == [(i, s) for i in range(30) for s in range(2)]
        assert result.report.total == 30
        assert result.report.succeeded == 30
        assert result.report.failed == 0


def test_pages_in_flight_are_bounded():
    transform = SlowTransform(seed=1)
    max_seen = 0

    def counting_pages():
        nonlocal max_seen
        for pulled, raw in enumerate(raw_pages(40), start=1):
            with transform.lock:
                max_seen = max(max_seen, pulled - transform.finished)
            yield raw

    PageScheduler(transform, prefetch=1).run(counting_pages(), CONFIG, worker_count=3)

    assert 1 <= max_seen <= 3 + 1


def test_page_failures_are_recorded_not_raised():
    scheduler = PageScheduler(FailingTransform(bad_indices={2, 5}, unexpected={7}), prefetch=0)

    result = scheduler.run(raw_pages(10), CONFIG)

    assert [p.source_index for p in result.pages] == [0, 1, 3, 4, 6, 8, 9]
    report = result.report
    assert report.total == 10
    assert report.succeeded == 7
    assert [f.source_index for f in report.failures] == [2, 5, 7]
    assert report.failures[0].kind == PageErrorKind.DECODE
    assert "RuntimeError" in report.failures[2].message
    assert report.summary() == "7 succeeded, 3 failed"


def test_failure_threshold_is_enforced_when_requested():
    scheduler = PageScheduler(FailingTransform(bad_indices=range(6)), prefetch=0)

    with pytest.raises(TooManyFailuresError) as info:
        scheduler.run(raw_pages(10), CONFIG, max_failure_ratio=0.5)

    assert info.value.failed == 6
    assert info.value.total == 10


def test_check_failures_rules():
    def report(total, failed):
        failures = [PageFailure(source_index=i, message="bad") for i in range(failed)]
        return ProcessingReport(total=total, succeeded=total - failed, failures=failures)

    check_failures(report(10, 1), 0.5)
    check_failures(report(10, 5), 0.5)
    check_failures(ProcessingReport(), 0.5)

    with pytest.raises(TooManyFailuresError):
        check_failures(report(10, 6), 0.5)
    # Todas fallidas siempre es fatal, aunque no haya umbral
    with pytest.raises(TooManyFailuresError):
        check_failures(report(3, 3), None)


def test_cancellation_stops_pulling_pages():
    cancel = threading.Event()

    def transform(raw, config):
        if raw.index == 3:
            cancel.set()
        time.sleep(0.005)
        return [fake_page(raw)]

    result = PageScheduler(transform, prefetch=0).run(
        raw_pages(50), CONFIG, worker_count=2, cancel_event=cancel
    )

    assert result.report.cancelled
    assert result.report.total < 50
    assert len(result.pages) == result.report.succeeded
    assert result.report.summary().endswith("(cancelled)")


def test_progress_callback_reports_every_page():
    calls = []

    PageScheduler(SlowTransform(), prefetch=2).run(
        raw_pages(12), CONFIG, on_progress=lambda done, attempted: calls.append(done)
    )

    assert calls == list(range(1, 13))
