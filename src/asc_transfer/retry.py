"""Retry with exponential backoff, jitter and server supplied hints."""

from asc_transfer.errors import OperationCancelled
from asc_transfer.errors import RetryableError
from asc_transfer.errors import RetryLimitExceeded
from dataclasses import dataclass
from dataclasses import replace

import logging
import random
import time


logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
JITTER_FRACTION = 0.25

# 2**62 * any sane base delay is far past any max_delay.
_MAX_EXPONENT = 62


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry.

    ``max_attempts`` counts retries after the first call: 0 disables
    retrying, a negative value selects ``DEFAULT_MAX_RETRIES``. Delays are
    in seconds.
    """

    max_attempts: int = -1
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    log_retries: bool = False

    def resolved(self):
        """Return a copy with defaults substituted for unset values."""
        return replace(
            self,
            max_attempts=(
                self.max_attempts if self.max_attempts >= 0 else DEFAULT_MAX_RETRIES
            ),
            base_delay=self.base_delay if self.base_delay > 0 else DEFAULT_BASE_DELAY,
            max_delay=self.max_delay if self.max_delay > 0 else DEFAULT_MAX_DELAY,
        )


def compute_backoff(retry_number, policy, rng=None):
    """Delay before retry ``retry_number`` (1-based), jittered by +/-25%."""
    if rng is None:
        rng = random.Random()
    exponent = max(retry_number - 1, 0)
    if exponent > _MAX_EXPONENT:
        delay = policy.max_delay
    else:
        delay = min(policy.max_delay, policy.base_delay * 2**exponent)
    jitter = delay * JITTER_FRACTION * (2 * rng.random() - 1)
    jittered = delay + jitter
    if jittered < 0:
        jittered = delay / 2
    return jittered


def execute_with_retry(operation, policy=None, cancel=None, rng=None):
    """Call ``operation()`` until it succeeds or fails permanently.

    Only ``RetryableError`` triggers a retry; anything else propagates at
    once. A non-zero ``retry_after`` on the error replaces the computed
    backoff. When retries run out ``RetryLimitExceeded`` is raised from the
    last error. The wait between attempts ends early with
    ``OperationCancelled`` if ``cancel`` fires.
    """
    policy = (policy or RetryPolicy()).resolved()
    if cancel is not None:
        cancel.raise_if_cancelled()
    if policy.max_attempts == 0:
        return operation()

    if rng is None:
        rng = random.Random()
    log = logger.info if policy.log_retries else logger.debug
    retries = 0
    while True:
        try:
            return operation()
        except RetryableError as e:
            last_error = e

        if retries >= policy.max_attempts:
            raise RetryLimitExceeded(retries + 1, last_error) from last_error

        retries += 1
        if last_error.retry_after and last_error.retry_after > 0:
            delay = last_error.retry_after
        else:
            delay = compute_backoff(retries, policy, rng)

        log(
            "Retrying request (attempt %d/%d) in %.2fs: %s",
            retries,
            policy.max_attempts,
            delay,
            last_error,
        )

        if cancel is None:
            time.sleep(delay)
        elif cancel.wait(delay):
            raise OperationCancelled("retry cancelled") from last_error
