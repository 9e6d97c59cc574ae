"""Agentgate - HTTP gateway over a pool of long-lived agent sessions.

This package provides an admission-controlled dispatch queue that multiplexes
HTTP requests onto a small number of stateful Claude agent processes, with
session affinity, worker recycling, and idle session collection.
"""

__version__ = "0.1.0"
