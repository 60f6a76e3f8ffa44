"""Human-readable end-of-run summary printed to stdout for CI logs."""

from __future__ import annotations

import sys
from typing import TextIO

from stampede.metrics import MetricRecorder
from stampede.runner import RunResult
from stampede.thresholds import ThresholdResult

WIDTH = 78


def _format_value(value: float | None) -> str:
    if value is None:
        return "-"
    if float(value).is_integer() and abs(value) < 1e12:
        return f"{int(value)}"
    return f"{value:.4g}"


def _status(result: ThresholdResult) -> str:
    status = "PASS" if result.passed else "FAIL"
    return f"{status} (no data)" if result.no_data else status


def format_thresholds(result: RunResult) -> list[str]:
    lines = [
        "Thresholds",
        "-" * WIDTH,
        f"{'Metric':<34}{'Rule':<16}{'Actual':>12}{'Status':>16}",
        "-" * WIDTH,
    ]
    if not result.report.results:
        lines.append("(no thresholds configured)")
    for item in result.report.results:
        lines.append(
            f"{item.rule.key:<34}{item.rule.source:<16}"
            f"{_format_value(item.observed):>12}{_status(item):>16}"
        )
    lines.append("-" * WIDTH)
    return lines


def format_checks(recorder: MetricRecorder) -> list[str]:
    summary = recorder.check_summary()
    if not summary:
        return []
    lines = ["Checks", "-" * WIDTH]
    for name, (passes, fails) in sorted(summary.items()):
        total = passes + fails
        mark = "ok" if fails == 0 else "x "
        lines.append(f"{mark} {name:<50}{passes:>8}/{total:<8}")
    lines.append("-" * WIDTH)
    return lines


def format_metrics(recorder: MetricRecorder) -> list[str]:
    lines = ["Metrics", "-" * WIDTH]
    for name, aggregates in recorder.snapshot().items():
        rendered = " ".join(f"{key}={_format_value(value)}" for key, value in aggregates.items())
        lines.append(f"{name:<22}{rendered}")
    lines.append("-" * WIDTH)
    return lines


def print_summary(result: RunResult, recorder: MetricRecorder, stream: TextIO | None = None) -> None:
    """
    Print thresholds, checks, metric aggregates and the overall verdict.

    Every threshold rule is listed with its observed value and PASS/FAIL;
    rules that passed only because their metric had no samples are
    marked ``(no data)``.
    """
    stream = stream or sys.stdout
    lines: list[str] = []

    if result.setup_error:
        lines.append(f"Setup failed: {result.setup_error}")
    else:
        lines.extend(format_checks(recorder))
        lines.extend(format_metrics(recorder))
        lines.extend(format_thresholds(result))

    if result.aborted or result.interrupted:
        lines.append(f"Run stopped early: {result.abort_reason}")
    if result.cancelled_requests:
        lines.append(f"Cancelled in-flight requests: {result.cancelled_requests}")
    if result.teardown_error:
        lines.append(f"Teardown failed: {result.teardown_error}")
    lines.append(f"Overall: {'PASS' if result.passed else 'FAIL'} ({result.duration_s:.1f}s)")

    print("\n".join(lines), file=stream)
