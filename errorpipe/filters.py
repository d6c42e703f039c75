"""Filter/transform policy applied before an error is handed to an adapter."""

import logging
import random as _random
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from errorpipe.models import ErrorLevel, NormalizedError

logger = logging.getLogger(__name__)

ErrorFilter = Callable[[NormalizedError], bool]
BeforeSend = Callable[[NormalizedError], "NormalizedError | None"]


@dataclass
class FilterPolicy:
    min_level: ErrorLevel | None = None
    ignore_errors: list = field(default_factory=list)
    error_filters: list[ErrorFilter] = field(default_factory=list)
    sample_rate: float = 1.0
    before_send: BeforeSend | None = None
    random: Callable[[], float] = _random.random

    def __post_init__(self):
        if not 0.0 <= self.sample_rate <= 1.0:
            raise ValueError(f"sample_rate must be between 0 and 1, got {self.sample_rate}")
        if self.min_level is not None:
            self.min_level = ErrorLevel.parse(self.min_level)
        self.ignore_errors = [
            p if isinstance(p, (str, re.Pattern)) else re.compile(str(p))
            for p in self.ignore_errors
        ]


def _matches(pattern, error: NormalizedError) -> bool:
    if isinstance(pattern, re.Pattern):
        return bool(pattern.search(error.message) or pattern.search(error.name))
    return pattern in error.message or pattern in error.name


def should_deliver(error: NormalizedError, policy: FilterPolicy | None) -> bool:
    """Run the checks in order: level, ignore patterns, custom filters, sampling.

    Stops at the first rejection, so later filters and the random draw are
    not consulted.
    """
    if policy is None:
        return True

    if policy.min_level is not None and error.level < policy.min_level:
        return False

    for pattern in policy.ignore_errors:
        if _matches(pattern, error):
            return False

    for error_filter in policy.error_filters:
        if not error_filter(error):
            return False

    if policy.sample_rate < 1.0:
        return policy.random() < policy.sample_rate

    return True


def transform(error: NormalizedError, policy: FilterPolicy | None) -> NormalizedError | None:
    """Apply before_send; a falsy result cancels delivery."""
    if policy is None or policy.before_send is None:
        return error
    result = policy.before_send(error)
    if not result:
        return None
    return result


def apply_policy(error: NormalizedError, policy: FilterPolicy | None) -> NormalizedError | None:
    if not should_deliver(error, policy):
        logger.debug("Filtered error %s: %s", error.name, error.message)
        return None
    return transform(error, policy)
