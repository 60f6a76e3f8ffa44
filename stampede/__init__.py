"""
Stampede: a threaded HTTP load-generation engine.

Drives a target HTTP service with a population of virtual users (VUs)
that execute weighted, multi-step scenarios, then gates the run on
latency and error-rate thresholds.

Building blocks re-exported here are everything a load script needs::

    from stampede import Extract, HttpCall, Scenario, Think, status_is

    scenarios = [
        Scenario(
            name="create_then_merge",
            steps=[
                HttpCall("create", "POST", "/pullRequest/create",
                         body={"pull_request_id": "{pr_id}"},
                         checks={"Create PR: status 201": status_is(201)}),
                Think(1),
                HttpCall("merge", "POST", "/pullRequest/merge",
                         body={"pull_request_id": "{pr_id}"},
                         checks={"Merge PR: status 200": status_is(200)}),
            ],
        ),
    ]
"""

from stampede.config import Settings
from stampede.metrics import MetricRecorder
from stampede.models import Extract, HttpCall, RunConfig, Scenario, Stage, Think
from stampede.runner import RunResult, Runner
from stampede.scenario import expected_statuses, status_is
from stampede.script import Script

__version__ = "0.3.0"

__all__ = [
    "Extract",
    "HttpCall",
    "MetricRecorder",
    "RunConfig",
    "RunResult",
    "Runner",
    "Scenario",
    "Script",
    "Settings",
    "Stage",
    "Think",
    "expected_statuses",
    "status_is",
]
