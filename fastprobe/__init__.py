"""Probe frames, reply validation, result records and writers, and scan progress monitoring."""

__version__ = "0.1.0"