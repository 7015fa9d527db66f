"""Relay — resumable, fault-tolerant task dispatcher."""

__version__ = "0.1.0"
