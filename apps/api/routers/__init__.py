"""Routers package."""

from . import (
    health,
    oauth,
    media,
)
