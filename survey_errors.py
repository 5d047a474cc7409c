# -*- coding: utf-8 -*-
"""Errors raised by the pair scheduler and its exposure ledger."""

from __future__ import annotations
from pathlib import Path


class SurveyError(Exception):
    """Base class for everything the survey core raises on purpose."""


class InvalidInput(SurveyError, ValueError):
    """Bad request data: no dimensions, duplicate items, bad batch size, ..."""


class PersistenceError(SurveyError):
    """The exposure table could not be read from or written to disk."""

    def __init__(self, message: str, path: Path | None = None):
        super().__init__(message)
        self.path = path
