"""
In-memory PR-review service used as the load target in integration tests.

Implements the five endpoints the bundled load scripts drive, with the
same status codes as the real service:

- ``POST /team/add`` -> 201, 400 ``TEAM_EXISTS``
- ``POST /pullRequest/create`` -> 201 with up to two reviewers from the
  author's team, 404 ``NOT_FOUND``, 409 ``PR_EXISTS``
- ``POST /pullRequest/merge`` -> 200 (idempotent)
- ``POST /pullRequest/reassign`` -> 200, 409 ``NO_CANDIDATE`` / ``PR_MERGED``
- ``GET /users/getReview?user_id=`` -> 200

Behaviour knobs live in ``app.config`` so a test can inject failures:
``FAIL_TEAM_ADD`` makes team creation answer 500, ``FAIL_ALL`` makes
every PR endpoint answer 500, and ``GET /slow`` sleeps for
``SLOW_SECONDS``.
"""

import threading
import time

from flask import Flask, jsonify, request


def _error(code, message, status):
    return jsonify({"error": {"code": code, "message": message}}), status


def create_app():
    app = Flask(__name__)
    app.config.update(FAIL_TEAM_ADD=False, FAIL_ALL=False, SLOW_SECONDS=3.0)

    lock = threading.Lock()
    teams = {}
    users = {}
    pull_requests = {}

    def _candidates(author_id, exclude):
        team = users[author_id]["team_name"]
        return [
            member["user_id"]
            for member in teams[team]
            if member["is_active"] and member["user_id"] != author_id and member["user_id"] not in exclude
        ]

    @app.before_request
    def _inject_failures():
        if app.config["FAIL_ALL"] and request.path.startswith("/pullRequest"):
            return _error("INTERNAL", "injected failure", 500)
        return None

    @app.post("/team/add")
    def add_team():
        if app.config["FAIL_TEAM_ADD"]:
            return _error("INTERNAL", "injected failure", 500)
        payload = request.get_json(silent=True) or {}
        name = payload.get("team_name")
        with lock:
            if name in teams:
                return _error("TEAM_EXISTS", f"{name} already exists", 400)
            teams[name] = payload.get("members", [])
            for member in teams[name]:
                users[member["user_id"]] = {**member, "team_name": name}
        return jsonify({"team": payload}), 201

    @app.post("/pullRequest/create")
    def create_pull_request():
        payload = request.get_json(silent=True) or {}
        pr_id = payload.get("pull_request_id")
        author_id = payload.get("author_id")
        with lock:
            if author_id not in users:
                return _error("NOT_FOUND", "author not found", 404)
            if pr_id in pull_requests:
                return _error("PR_EXISTS", "PR id already exists", 409)
            pr = {
                "pull_request_id": pr_id,
                "pull_request_name": payload.get("pull_request_name"),
                "author_id": author_id,
                "status": "OPEN",
                "assigned_reviewers": _candidates(author_id, exclude=())[:2],
            }
            pull_requests[pr_id] = pr
        return jsonify({"pr": pr}), 201

    @app.post("/pullRequest/merge")
    def merge_pull_request():
        pr_id = (request.get_json(silent=True) or {}).get("pull_request_id")
        with lock:
            pr = pull_requests.get(pr_id)
            if pr is None:
                return _error("NOT_FOUND", "PR not found", 404)
            pr["status"] = "MERGED"
        return jsonify({"pr": pr}), 200

    @app.post("/pullRequest/reassign")
    def reassign_reviewer():
        payload = request.get_json(silent=True) or {}
        old_user_id = payload.get("old_user_id")
        with lock:
            pr = pull_requests.get(payload.get("pull_request_id"))
            if pr is None:
                return _error("NOT_FOUND", "PR not found", 404)
            if pr["status"] == "MERGED":
                return _error("PR_MERGED", "cannot reassign on merged PR", 409)
            if old_user_id not in pr["assigned_reviewers"]:
                return _error("NOT_ASSIGNED", "reviewer is not assigned to this PR", 409)
            candidates = _candidates(pr["author_id"], exclude=pr["assigned_reviewers"])
            if not candidates:
                return _error("NO_CANDIDATE", "no active replacement candidate in team", 409)
            replacement = candidates[0]
            reviewers = pr["assigned_reviewers"]
            reviewers[reviewers.index(old_user_id)] = replacement
        return jsonify({"pr": pr, "replaced_by": replacement}), 200

    @app.get("/users/getReview")
    def get_reviews():
        user_id = request.args.get("user_id")
        with lock:
            assigned = [
                {key: pr[key] for key in ("pull_request_id", "pull_request_name", "author_id", "status")}
                for pr in pull_requests.values()
                if user_id in pr["assigned_reviewers"]
            ]
        return jsonify({"user_id": user_id, "pull_requests": assigned}), 200

    @app.get("/slow")
    def slow():
        time.sleep(app.config["SLOW_SECONDS"])
        return jsonify({"slept": app.config["SLOW_SECONDS"]}), 200

    return app
