"""
Threshold rules and their evaluation.

A threshold binds a metric key to one or more rule expressions::

    thresholds = {
        "http_req_duration": ["p(95)<300"],
        "http_req_failed": ["rate<0.001"],
        "http_req_duration{scenario:read}": [
            {"threshold": "avg<200", "abortOnFail": True, "delayAbortEval": "10s"},
        ],
    }

Expressions have the form ``AGGREGATION OPERATOR NUMBER[UNIT]``.
Aggregations are ``p(N)``, ``avg``, ``min``, ``max``, ``med``, ``rate``,
``count`` and ``value``; operators are ``<``, ``<=``, ``>``, ``>=``,
``==`` and ``!=``.  A ``ms``/``s``/``m`` unit on the bound is converted
to milliseconds, the unit every latency stream records in.

Key Concepts Demonstrated:
- Small regex grammar with precise, user-facing syntax errors
- Per-rule results retained for the final report
- Configurable verdict for rules whose metric has no samples
"""

from __future__ import annotations

import logging
import operator
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from stampede.config import NO_DATA_PASS, NO_DATA_POLICIES
from stampede.durations import parse_duration
from stampede.exceptions import ConfigError, ThresholdSyntaxError
from stampede.metrics import MetricRecorder

logger = logging.getLogger(__name__)

OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_UNIT_MS = {"ms": 1.0, "s": 1000.0, "m": 60_000.0}

_EXPRESSION_RE = re.compile(
    r"""^\s*
    (?P<agg>p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\)|avg|min|max|med|rate|count|value)
    \s*(?P<op><=|>=|==|!=|<|>)\s*
    (?P<bound>-?\d+(?:\.\d+)?)(?P<unit>ms|s|m)?
    \s*$""",
    re.VERBOSE,
)

_KEY_RE = re.compile(r"^\s*(?P<metric>[A-Za-z_][\w.]*)\s*(?:\{(?P<selector>[^{}]*)\})?\s*$")


@dataclass(frozen=True)
class ThresholdRule:
    """
    One parsed threshold expression.

    Attributes:
        metric: Stream name the rule reads.
        selector: Tag filter applied to the stream (sub-metric).
        aggregation: ``p``, ``avg``, ``min``, ``max``, ``med``, ``rate``,
            ``count`` or ``value``.
        argument: Percentile for ``p`` aggregations.
        operator: Comparison operator symbol.
        bound: Right-hand side, already converted to milliseconds when a
            unit was given.
        abort_on_fail: Stop the run as soon as the rule fails.
        delay_abort_eval_s: Seconds into the run before abort checks apply.
        source: The expression as written.
    """

    metric: str
    aggregation: str
    operator: str
    bound: float
    argument: float | None = None
    selector: Mapping[str, str] = field(default_factory=dict)
    abort_on_fail: bool = False
    delay_abort_eval_s: float = 0.0
    source: str = ""

    @property
    def key(self) -> str:
        """Metric key as written in the thresholds mapping."""
        if not self.selector:
            return self.metric
        tags = ",".join(f"{k}:{v}" for k, v in self.selector.items())
        return f"{self.metric}{{{tags}}}"

    @property
    def label(self) -> str:
        if self.aggregation == "p":
            return f"p({self.argument:g})"
        return self.aggregation

    def holds(self, observed: float) -> bool:
        return OPERATORS[self.operator](observed, self.bound)


@dataclass(frozen=True)
class ThresholdResult:
    """
    Verdict of one rule.

    Attributes:
        rule: The evaluated rule.
        observed: Measured aggregate, or ``None`` if the metric had no
            matching samples.
        passed: Whether the rule holds.
        no_data: ``True`` when the verdict came from the no-data policy.
    """

    rule: ThresholdRule
    observed: float | None
    passed: bool
    no_data: bool = False


@dataclass(frozen=True)
class ThresholdReport:
    """Per-rule results plus the overall verdict (logical AND)."""

    results: tuple[ThresholdResult, ...] = ()

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def failures(self) -> list[ThresholdResult]:
        return [result for result in self.results if not result.passed]


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------

def parse_metric_key(key: str) -> tuple[str, dict[str, str]]:
    """
    Split ``"metric{tag:value,...}"`` into the metric name and tag selector.

    Raises:
        ThresholdSyntaxError: If the key is malformed.
    """
    match = _KEY_RE.match(key)
    if not match:
        raise ThresholdSyntaxError(key, "metric key must look like name or name{tag:value}")

    selector: dict[str, str] = {}
    raw_selector = match.group("selector")
    if raw_selector:
        for part in raw_selector.split(","):
            tag, sep, value = part.partition(":")
            if not sep or not tag.strip():
                raise ThresholdSyntaxError(key, f"tag filter {part!r} must be tag:value")
            selector[tag.strip()] = value.strip()
    return match.group("metric"), selector


def parse_rule(metric_key: str, spec: str | Mapping[str, Any]) -> ThresholdRule:
    """
    Parse one rule for *metric_key*.

    Args:
        metric_key: Metric name with an optional tag selector.
        spec: The expression string, or a mapping with ``threshold`` and
            optional ``abortOnFail`` / ``delayAbortEval`` keys.

    Returns:
        The parsed rule.

    Raises:
        ThresholdSyntaxError: If the key or expression is malformed.
    """
    abort_on_fail = False
    delay_abort_eval_s = 0.0
    if isinstance(spec, Mapping):
        expression = spec.get("threshold")
        if not isinstance(expression, str):
            raise ThresholdSyntaxError(str(spec), "mapping form needs a 'threshold' string")
        abort_on_fail = bool(spec.get("abortOnFail", spec.get("abort_on_fail", False)))
        delay = spec.get("delayAbortEval", spec.get("delay_abort_eval", 0))
        try:
            delay_abort_eval_s = parse_duration(delay)
        except ConfigError as exc:
            raise ThresholdSyntaxError(expression, str(exc)) from exc
    elif isinstance(spec, str):
        expression = spec
    else:
        raise ThresholdSyntaxError(repr(spec), "rule must be a string or a mapping")

    metric, selector = parse_metric_key(metric_key)
    match = _EXPRESSION_RE.match(expression)
    if not match:
        raise ThresholdSyntaxError(
            expression, "expected AGGREGATION OPERATOR NUMBER, e.g. p(95)<300 or rate<0.01"
        )

    aggregation = match.group("agg")
    argument = None
    if aggregation.startswith("p("):
        aggregation = "p"
        argument = float(match.group("pct"))
        if argument > 100:
            raise ThresholdSyntaxError(expression, "percentile must be <= 100")

    bound = float(match.group("bound"))
    unit = match.group("unit")
    if unit:
        bound *= _UNIT_MS[unit]

    return ThresholdRule(
        metric=metric,
        selector=selector,
        aggregation=aggregation,
        argument=argument,
        operator=match.group("op"),
        bound=bound,
        abort_on_fail=abort_on_fail,
        delay_abort_eval_s=delay_abort_eval_s,
        source=expression.strip(),
    )


def parse_thresholds(raw: Mapping[str, Any] | None) -> dict[str, tuple[ThresholdRule, ...]]:
    """
    Parse a whole ``thresholds`` mapping.

    Each value may be a single rule or a list of rules.
    """
    parsed: dict[str, tuple[ThresholdRule, ...]] = {}
    for key, specs in (raw or {}).items():
        if isinstance(specs, (str, Mapping)):
            specs = [specs]
        parsed[key] = tuple(parse_rule(key, spec) for spec in specs)
    return parsed


# -----------------------------------------------------------------------------
# Evaluation
# -----------------------------------------------------------------------------

class ThresholdEvaluator:
    """
    Evaluate threshold rules against a :class:`MetricRecorder`.

    A rule whose metric has no matching samples passes vacuously under
    the ``"pass"`` policy and fails closed under ``"fail"``; either way
    its result is flagged ``no_data`` so the report can say so.
    """

    def __init__(
        self,
        thresholds: Mapping[str, Iterable[ThresholdRule]],
        no_data_policy: str = NO_DATA_PASS,
    ):
        if no_data_policy not in NO_DATA_POLICIES:
            raise ConfigError(f"Unknown no-data policy: {no_data_policy!r}")
        self.rules: tuple[ThresholdRule, ...] = tuple(
            rule for rules in thresholds.values() for rule in rules
        )
        self.no_data_policy = no_data_policy

    def evaluate_rule(self, rule: ThresholdRule, recorder: MetricRecorder) -> ThresholdResult:
        observed = recorder.aggregate(
            rule.metric, rule.aggregation, argument=rule.argument, tags=rule.selector
        )
        if observed is None:
            return ThresholdResult(
                rule=rule,
                observed=None,
                passed=self.no_data_policy == NO_DATA_PASS,
                no_data=True,
            )
        return ThresholdResult(rule=rule, observed=observed, passed=rule.holds(observed))

    def evaluate(self, recorder: MetricRecorder) -> ThresholdReport:
        """Evaluate every rule and return the per-rule report."""
        results = tuple(self.evaluate_rule(rule, recorder) for rule in self.rules)
        for result in results:
            if result.no_data:
                logger.info(
                    "Threshold %s %s had no samples (%s by policy)",
                    result.rule.key,
                    result.rule.source,
                    "pass" if result.passed else "fail",
                )
        return ThresholdReport(results=results)

    def abort_triggers(self, recorder: MetricRecorder, elapsed_s: float) -> list[ThresholdResult]:
        """
        Return failing abort-on-fail rules whose evaluation delay has passed.

        Rules without samples never trigger an abort mid-run.
        """
        triggered = []
        for rule in self.rules:
            if not rule.abort_on_fail or elapsed_s < rule.delay_abort_eval_s:
                continue
            result = self.evaluate_rule(rule, recorder)
            if not result.no_data and not result.passed:
                triggered.append(result)
        return triggered
