"""
Tests for configuration defaults.
"""

import socket

from shipsync.config import default_worker_id


class TestDefaultWorkerId:
    """Tests for default_worker_id."""

    def test_includes_hostname(self):
        """The hostname tells instances apart in locked_by."""
        assert socket.gethostname() in default_worker_id()

    def test_unique_per_call(self):
        """Two processes with the same hostname and PID still get distinct IDs."""
        assert default_worker_id() != default_worker_id()
