import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """
    An abstract clock interface.
    """

    @abstractmethod
    def sleep(self, duration: float) -> None:
        raise NotImplementedError


class SystemClock(Clock):
    def sleep(self, duration: float) -> None:
        time.sleep(duration)


class TestingClock(Clock):
    """
    A clock that only moves when ``sleep`` is called. ``time`` tells how far
    it has moved.
    """

    def __init__(self, epoch: float = 0.0) -> None:
        self.__time = epoch

    def time(self) -> float:
        return self.__time

    def sleep(self, duration: float) -> None:
        self.__time = self.__time + duration
