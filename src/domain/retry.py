"""
Bounded retries for outbound collaborator calls.

Email and payment providers are the only blocking dependencies of the
pipeline. Calls are retried with exponential backoff a small number of
times; when the budget is exhausted the caller sees
CollaboratorUnavailable, which the API reports as a retryable 503.
"""

import logging
from collections.abc import Callable
from typing import Any, TypeVar

import backoff

from .exceptions import CollaboratorUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    retry_on: type[Exception] | tuple[type[Exception], ...],
    max_tries: int,
    factor: float,
    collaborator: str,
    **kwargs: Any,
) -> T:
    """
    Call func, retrying on retry_on with exponential backoff.

    Retries are logged under the collaborator name, so func may be any
    callable (bound method, partial, test double).

    Raises:
        CollaboratorUnavailable: every attempt failed
    """

    def log_backoff(details: dict[str, Any]) -> None:
        logger.warning(
            "%s call failed (attempt %d), retrying in %.1fs: %s",
            collaborator,
            details["tries"],
            details["wait"],
            details.get("exception"),
        )

    retrying = backoff.on_exception(
        backoff.expo,
        retry_on,
        max_tries=max(max_tries, 1),
        jitter=None,
        factor=factor,
        logger=None,
        on_backoff=log_backoff,
    )(func)
    try:
        return retrying(*args, **kwargs)
    except retry_on as e:
        logger.error("%s unavailable after %d attempt(s): %s", collaborator, max_tries, e)
        raise CollaboratorUnavailable(f"{collaborator} is temporarily unavailable, please try again") from e
