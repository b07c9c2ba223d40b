"""
Security utilities for fintrack.

Callers arrive already authenticated; the core only insists that every
mutating call names the acting user and organization.
"""

import functools
import inspect
from typing import Callable, TypeVar, ParamSpec

from fintrack.core.exceptions import ForbiddenError, UserContextError


P = ParamSpec("P")
T = TypeVar("T")

REQUIRED_CONTEXT = ("user_id", "organization_id")


def require_user_context(func: Callable[P, T]) -> Callable[P, T]:
    """
    Decorator that enforces user_id and organization_id are present and non-empty.

    Usage:
        @require_user_context
        def commit(self, upload, user_id: str, organization_id: str, options):
            ...

        service.commit(upload, user_id=None, organization_id="org-1", ...)  # Raises!
    """
    sig = inspect.signature(func)

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        bound = sig.bind_partial(*args, **kwargs)

        for name in REQUIRED_CONTEXT:
            if name not in sig.parameters:
                continue
            value = bound.arguments.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise UserContextError(
                    f"{name} is required for {func.__name__}"
                )

        return func(*args, **kwargs)

    return wrapper


def check_organization(record_org_id: str, organization_id: str, what: str = "record") -> None:
    """
    Validate that a record belongs to the caller's organization.

    Raises:
        ForbiddenError: If the organizations differ
    """
    if record_org_id != organization_id:
        raise ForbiddenError(f"Access denied to {what} outside organization {organization_id}")
