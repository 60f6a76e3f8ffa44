"""
Test suite for the stampede load engine.

This package contains:
- unit/: engine components tested in isolation against fake sessions
- integration/: whole runs driven against a live local PR-review service
- mocks/: fake ``requests`` sessions and responses shared by the unit tests
"""
