"""
Error taxonomy of the intent router.

- InvalidRequestError: the caller sent something we refuse to route.
- ClassificationUnavailableError: the LLM backend failed or timed out.
- AmbiguousIntentError: internal signal that turns into a clarification
  question; it never leaves route().
"""

from typing import List, Optional


class InvalidRequestError(ValueError):
    """Malformed or missing request input."""


class ClassificationUnavailableError(RuntimeError):
    """The classification backend could not produce an answer."""


class AmbiguousIntentError(Exception):
    def __init__(self, question: str, candidates: Optional[List[dict]] = None):
        super().__init__(question)
        self.question = question
        self.candidates = candidates or []
