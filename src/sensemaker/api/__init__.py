"""HTTP surface for submitting, polling and deleting analysis tasks."""

from sensemaker.api.app import create_app, run_api

__all__ = ["create_app", "run_api"]
