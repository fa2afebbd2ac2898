"""Hevy (gym logging) client."""

from .service import HevyService  # noqa: F401
