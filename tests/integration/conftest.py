"""
Live-server fixtures for integration tests.

Starts the in-memory PR-review service on a real socket in a background
thread so whole load runs can be driven against it over HTTP.

Key Concepts Demonstrated:
- Live server fixture on an ephemeral port (no port clashes)
- Fresh application state per test for isolation
- Engine settings pointed at the live server
"""

import threading

import pytest
from werkzeug.serving import make_server

from stampede.config import Settings, TestingConfig
from tests.integration.pr_service import create_app


@pytest.fixture
def pr_app():
    """A fresh PR-review application (empty teams and PRs)."""
    return create_app()


@pytest.fixture
def live_server(pr_app):
    """
    Serve ``pr_app`` on 127.0.0.1 in a daemon thread.

    Yields:
        str: Base URL of the running server.
    """
    server = make_server("127.0.0.1", 0, pr_app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield f"http://127.0.0.1:{server.server_port}"

    server.shutdown()
    thread.join(5)


@pytest.fixture
def live_settings(live_server):
    """Testing settings whose base URL is the live server."""
    return Settings.from_config(
        TestingConfig,
        base_url=live_server,
        request_timeout=5.0,
        graceful_stop=5.0,
    )
