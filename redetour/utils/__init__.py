"""Utility helpers."""

from redetour.utils.issues import flag_issue

__all__ = ["flag_issue"]
