"""claimflow HTTP API."""

from claimflow.api.main import create_app

__all__ = ["create_app"]
