"""Ownership checks applied before any engine operation runs."""

from __future__ import annotations

import logging
from typing import Union

from .errors import Forbidden
from .models import Quiz, QuizSession

__all__ = ["AuthorizationGate"]

logger = logging.getLogger(__name__)

Resource = Union[Quiz, QuizSession]


class AuthorizationGate:
    """Allow a caller through only when they own the quiz or session."""

    def authorize(self, caller_id: str, resource: Resource) -> None:
        if not caller_id or resource.owner_id != caller_id:
            logger.warning(
                "Access denied",
                extra={
                    "caller_id": caller_id,
                    "resource": type(resource).__name__,
                },
            )
            raise Forbidden()

    def is_allowed(self, caller_id: str, resource: Resource) -> bool:
        try:
            self.authorize(caller_id, resource)
        except Forbidden:
            return False
        return True
