"""Prometheus exporter for GitHub Actions runs, jobs, runners and API quota."""

__version__ = "0.1.0"
