"""deskscope -- Desktop and system state snapshots for automated agents.

This package produces machine-readable observations of a machine: a
one-shot "wake" payload describing the machine, user, filesystem and
network identity, and a repeatedly polled live payload describing
windows, displays, connections and filesystem activity. Live polls can
be streamed as newline-delimited JSON, optionally as JSON Patch diffs.
"""

__version__ = "0.1.0"
