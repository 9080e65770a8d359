"""Artifex backend: generation job orchestration behind a REST API."""

__version__ = "0.1.0"
