"""Pipelens: telemetry analysis for automation pipeline runs."""

__version__ = "0.1.0"
