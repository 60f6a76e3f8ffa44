"""
Baseline load for the PR-review service.

Ten VUs for thirty seconds, each repeatedly creating a pull request for a
single pre-registered author, thinking for a second, then merging it.

Run with::

    stampede run load_scripts/pr_review_easy.py --base-url http://api:8080
"""

import uuid

from stampede import HttpCall, Scenario, Think, status_is

TEAM_NAME = f"load_test_team_{uuid.uuid4()}"
AUTHOR_ID = f"author_{uuid.uuid4()}"

options = {
    "vus": 10,
    "duration": "30s",
    "thresholds": {
        "http_req_duration": ["p(95)<300"],
        "http_req_failed": ["rate<0.001"],
    },
}


def setup(client):
    """Register one team with the shared author and two reviewers."""
    response = client.post(
        "/team/add",
        json={
            "team_name": TEAM_NAME,
            "members": [
                {"user_id": AUTHOR_ID, "username": "Load Test Author", "is_active": True},
                {"user_id": "u1", "username": "Load Test Reviewer 1", "is_active": True},
                {"user_id": "u2", "username": "Load Test Reviewer 2", "is_active": True},
            ],
        },
    )
    client.check(response, {"Setup: Team created successfully": status_is(201)})
    return {"authorID": AUTHOR_ID}


def new_pull_request(state):
    return {"pr_id": f"pr-{uuid.uuid4()}"}


scenarios = [
    Scenario(
        name="create_merge",
        prepare=new_pull_request,
        steps=[
            HttpCall(
                "create_pr",
                "POST",
                "/pullRequest/create",
                body={
                    "pull_request_id": "{pr_id}",
                    "pull_request_name": "Load Test PR",
                    "author_id": "{data[authorID]}",
                },
                checks={"Create PR: status 201": status_is(201)},
            ),
            Think(1),
            HttpCall(
                "merge_pr",
                "POST",
                "/pullRequest/merge",
                body={"pull_request_id": "{pr_id}"},
                checks={"Merge PR: status 200": status_is(200)},
            ),
            Think(1),
        ],
    ),
]
