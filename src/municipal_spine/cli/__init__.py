"""municipal-spine command line."""

from municipal_spine.cli.app import app

__all__ = ["app"]
