"""Scheduled job exports."""

from .expiry import run_expiry_sweep  # noqa: F401

__all__ = ["run_expiry_sweep"]
