import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional, TypeVar, Union

from bqdash.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

T = TypeVar("T")

DelayFunction = Callable[[int], float]


def constant_delay(delay: float) -> DelayFunction:
    return lambda attempt: delay


class RetryException(Exception):
    """
    Every attempt failed. The last failure is available as ``__cause__``.
    """


class RetryPolicy(ABC):
    """
    Calls a function until it returns without raising, within the limits of
    the policy.
    """

    @abstractmethod
    def call(self, function: Callable[[], T]) -> T:
        raise NotImplementedError


class NoRetryPolicy(RetryPolicy):
    def call(self, function: Callable[[], T]) -> T:
        return function()


class BasicRetryPolicy(RetryPolicy):
    """
    Makes at most ``attempts`` calls. ``delay`` is a number of seconds or a
    function of the failed attempt number; without one the next attempt is
    made immediately. Exceptions rejected by ``suppression_test`` are raised
    at once instead of being retried.
    """

    def __init__(
        self,
        attempts: int,
        delay: Union[None, float, DelayFunction] = None,
        suppression_test: Optional[Callable[[Exception], bool]] = None,
        clock: Clock = SystemClock(),
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")

        self.__attempts = attempts
        self.__delay: Optional[DelayFunction] = (
            constant_delay(delay) if isinstance(delay, (int, float)) else delay
        )
        self.__suppression_test = suppression_test
        self.__clock = clock

    def __is_retryable(self, exception: Exception) -> bool:
        return self.__suppression_test is None or self.__suppression_test(exception)

    def call(self, function: Callable[[], T]) -> T:
        attempt = 1
        while True:
            try:
                return function()
            except Exception as exception:
                if not self.__is_retryable(exception):
                    raise
                if attempt >= self.__attempts:
                    raise RetryException(
                        f"Giving up after {attempt} attempts"
                    ) from exception
                logger.info("Attempt %d failed, retrying: %r", attempt, exception)

            if self.__delay is not None:
                self.__clock.sleep(self.__delay(attempt))
            attempt += 1
