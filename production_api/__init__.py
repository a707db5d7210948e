"""HTTP surface of the production workflow engine."""

from production_api.app import create_app

__all__ = ["create_app"]
