"""Loyalty job exports."""

from .expiration import run_points_expiration  # noqa: F401

__all__ = ["run_points_expiration"]
