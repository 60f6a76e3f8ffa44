"""
Test doubles for the HTTP layer.

The unit tests never open sockets: clients are handed a
:class:`~tests.mocks.fake_http.FakeSession` that returns canned
responses and remembers what it was asked to send.
"""
