"""Health, readiness and metrics HTTP endpoint."""

from hahaha.api.app import create_app

__all__ = ["create_app"]
