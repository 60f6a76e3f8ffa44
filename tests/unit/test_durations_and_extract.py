"""
Unit tests for duration parsing and dotted-path extraction.
"""

import pytest

from stampede.durations import format_duration, parse_duration
from stampede.exceptions import ConfigError
from stampede.extract import extract_path


pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "raw, seconds",
    [
        ("30s", 30),
        ("1m", 60),
        ("1m30s", 90),
        ("500ms", 0.5),
        ("1h2m3.5s", 3723.5),
        ("2.5", 2.5),
        (10, 10),
        (0.25, 0.25),
        (" 10S ", 10),
    ],
)
def test_parse_duration(raw, seconds):
    assert parse_duration(raw) == pytest.approx(seconds)


@pytest.mark.parametrize("raw", ["", "abc", "10x", "s30", "1m 30s", "-5s", -1, True])
def test_parse_duration_rejects_garbage(raw):
    with pytest.raises(ConfigError):
        parse_duration(raw)


@pytest.mark.parametrize(
    "seconds, text",
    [(0.25, "250ms"), (30, "30s"), (90, "1m30s"), (120, "2m")],
)
def test_format_duration(seconds, text):
    assert format_duration(seconds) == text


# -----------------------------------------------------------------------------
# extract_path
# -----------------------------------------------------------------------------

CREATE_RESPONSE = {
    "pr": {
        "pull_request_id": "pr-1",
        "assigned_reviewers": ["u1", "u2"],
        "status": "OPEN",
    }
}


@pytest.mark.parametrize(
    "path, expected",
    [
        ("pr.assigned_reviewers.0", "u1"),
        ("pr.assigned_reviewers.-1", "u2"),
        ("pr.status", "OPEN"),
        ("pr.assigned_reviewers", ["u1", "u2"]),
        ("", CREATE_RESPONSE),
    ],
)
def test_extract_path_hits(path, expected):
    assert extract_path(CREATE_RESPONSE, path) == expected


@pytest.mark.parametrize(
    "path",
    [
        "pr.assigned_reviewers.2",
        "pr.assigned_reviewers.first",
        "pr.missing",
        "pr.status.0",
        "team.name",
    ],
)
def test_extract_path_misses_return_default(path):
    assert extract_path(CREATE_RESPONSE, path, default="absent") == "absent"


def test_extract_path_on_empty_reviewer_list_is_absent():
    assert extract_path({"pr": {"assigned_reviewers": []}}, "pr.assigned_reviewers.0") is None
