"""
Unit tests for threshold parsing and evaluation.

Key SDET Concepts Demonstrated:
- Boundary values on both sides of a rule
- Parametrized syntax-error cases
- Policy-driven behaviour for empty metrics
"""

import pytest

from stampede.config import NO_DATA_FAIL, NO_DATA_PASS
from stampede.exceptions import ThresholdSyntaxError
from stampede.metrics import HTTP_REQ_DURATION, HTTP_REQ_FAILED
from stampede.models import RequestOutcome
from stampede.thresholds import ThresholdEvaluator, parse_rule, parse_thresholds


pytestmark = pytest.mark.unit


def _record_latencies(recorder, latencies, **tags):
    for latency in latencies:
        recorder.record_outcome(RequestOutcome(status=200, latency_ms=latency, failed=False, tags=tags))


def _record_failures(recorder, total, failed):
    for index in range(total):
        recorder.record_outcome(RequestOutcome(status=500 if index < failed else 200, latency_ms=5, failed=index < failed))


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------

def test_parse_percentile_rule():
    rule = parse_rule("http_req_duration", "p(95)<300")

    assert rule.metric == "http_req_duration"
    assert rule.aggregation == "p"
    assert rule.argument == 95
    assert rule.operator == "<"
    assert rule.bound == 300
    assert rule.label == "p(95)"


def test_parse_rule_converts_time_units_to_milliseconds():
    assert parse_rule("http_req_duration", "p(99)<1s").bound == 1000
    assert parse_rule("http_req_duration", "avg<=250ms").bound == 250
    assert parse_rule("iteration_duration", "max<2m").bound == 120_000


def test_parse_mapping_rule_with_abort_options():
    rule = parse_rule(
        "http_req_failed",
        {"threshold": "rate<0.1", "abortOnFail": True, "delayAbortEval": "10s"},
    )

    assert rule.abort_on_fail is True
    assert rule.delay_abort_eval_s == 10
    assert rule.source == "rate<0.1"


def test_parse_metric_key_with_tag_selector():
    rule = parse_rule("http_req_duration{scenario:reassign, name:reassign_pr}", "p(90)<500")

    assert rule.metric == "http_req_duration"
    assert rule.selector == {"scenario": "reassign", "name": "reassign_pr"}
    assert rule.key == "http_req_duration{scenario:reassign,name:reassign_pr}"


def test_parse_thresholds_accepts_single_rule_or_list():
    parsed = parse_thresholds({"http_req_duration": "p(95)<300", "http_req_failed": ["rate<0.001", "rate<0.01"]})

    assert len(parsed["http_req_duration"]) == 1
    assert len(parsed["http_req_failed"]) == 2


@pytest.mark.parametrize(
    "expression",
    ["p95<300", "p(95)<<300", "rate<", "avg 300", "median<3", "p(101)<5", ""],
)
def test_parse_rule_rejects_bad_expressions(expression):
    with pytest.raises(ThresholdSyntaxError):
        parse_rule("http_req_duration", expression)


@pytest.mark.parametrize("key", ["http_req_duration{scenario}", "{a:b}", "bad key"])
def test_parse_rule_rejects_bad_metric_keys(key):
    with pytest.raises(ThresholdSyntaxError):
        parse_rule(key, "avg<1")


def test_mapping_rule_without_threshold_string_is_rejected():
    with pytest.raises(ThresholdSyntaxError):
        parse_rule("http_req_failed", {"abortOnFail": True})


# -----------------------------------------------------------------------------
# Evaluation
# -----------------------------------------------------------------------------

def test_p95_rule_fails_when_tail_exceeds_bound(recorder):
    """The 95th percentile of [100, 120, 150, 310, 90] is 310."""
    # Arrange
    _record_latencies(recorder, [100, 120, 150, 310, 90])
    evaluator = ThresholdEvaluator(parse_thresholds({HTTP_REQ_DURATION: ["p(95)<300"]}))

    # Act
    report = evaluator.evaluate(recorder)

    # Assert
    assert report.passed is False
    assert report.results[0].observed == 310


def test_p95_rule_passes_when_tail_is_under_bound(recorder):
    # Arrange
    _record_latencies(recorder, [100, 120, 150, 250, 90])
    evaluator = ThresholdEvaluator(parse_thresholds({HTTP_REQ_DURATION: ["p(95)<300"]}))

    # Act
    report = evaluator.evaluate(recorder)

    # Assert
    assert report.passed is True
    assert report.results[0].observed == 250


def test_failure_rate_rule_fails_on_two_in_a_thousand(recorder):
    # Arrange
    _record_failures(recorder, total=1000, failed=2)
    evaluator = ThresholdEvaluator(parse_thresholds({HTTP_REQ_FAILED: ["rate<0.001"]}))

    # Act
    report = evaluator.evaluate(recorder)

    # Assert
    assert report.results[0].observed == pytest.approx(0.002)
    assert report.passed is False


def test_failure_rate_rule_passes_with_no_failures(recorder):
    _record_failures(recorder, total=1000, failed=0)
    evaluator = ThresholdEvaluator(parse_thresholds({HTTP_REQ_FAILED: ["rate<0.001"]}))

    assert evaluator.evaluate(recorder).passed is True


@pytest.mark.parametrize("policy, expected", [(NO_DATA_PASS, True), (NO_DATA_FAIL, False)])
def test_rule_without_samples_follows_no_data_policy(recorder, policy, expected):
    # Arrange
    evaluator = ThresholdEvaluator(parse_thresholds({HTTP_REQ_DURATION: ["p(95)<300"]}), policy)

    # Act
    result = evaluator.evaluate(recorder).results[0]

    # Assert
    assert result.no_data is True
    assert result.observed is None
    assert result.passed is expected


def test_sub_metric_rule_only_sees_matching_samples(recorder):
    # Arrange
    _record_latencies(recorder, [50, 60], scenario="read")
    _record_latencies(recorder, [900, 950], scenario="write")
    evaluator = ThresholdEvaluator(
        parse_thresholds(
            {
                "http_req_duration{scenario:read}": ["max<100"],
                "http_req_duration{scenario:write}": ["max<100"],
            }
        )
    )

    # Act
    read, write = evaluator.evaluate(recorder).results

    # Assert
    assert read.passed is True
    assert write.passed is False
    assert write.observed == 950


def test_report_passes_only_when_every_rule_holds(recorder):
    _record_latencies(recorder, [10, 20, 30])
    evaluator = ThresholdEvaluator(
        parse_thresholds({HTTP_REQ_DURATION: ["avg<100", "min>15"], HTTP_REQ_FAILED: ["rate==0"]})
    )

    report = evaluator.evaluate(recorder)

    assert report.passed is False
    assert [failure.rule.source for failure in report.failures] == ["min>15"]


def test_count_rule_sums_counter_increments(recorder):
    _record_latencies(recorder, [1, 2, 3])
    evaluator = ThresholdEvaluator(parse_thresholds({"http_reqs": ["count>=3"]}))

    assert evaluator.evaluate(recorder).results[0].observed == 3


def test_abort_triggers_respect_delay(recorder):
    # Arrange
    _record_failures(recorder, total=10, failed=5)
    evaluator = ThresholdEvaluator(
        parse_thresholds(
            {HTTP_REQ_FAILED: [{"threshold": "rate<0.1", "abortOnFail": True, "delayAbortEval": "5s"}]}
        )
    )

    # Act / Assert
    assert evaluator.abort_triggers(recorder, elapsed_s=1.0) == []
    triggered = evaluator.abort_triggers(recorder, elapsed_s=6.0)
    assert len(triggered) == 1
    assert triggered[0].observed == pytest.approx(0.5)


def test_abort_triggers_ignore_rules_without_abort_flag_or_data(recorder):
    evaluator = ThresholdEvaluator(
        parse_thresholds(
            {
                HTTP_REQ_FAILED: ["rate<0.1"],
                HTTP_REQ_DURATION: [{"threshold": "p(95)<1", "abortOnFail": True}],
            }
        )
    )

    assert evaluator.abort_triggers(recorder, elapsed_s=60) == []
