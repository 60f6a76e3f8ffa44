"""
Integration tests for the load engine.

These tests start a real PR-review service on a local socket and drive
whole runs against it:
- create/think/merge runs and their recorded metrics
- setup failure, abort-on-fail and force-stop behaviour
- the bundled load scripts through the command line
"""
