"""
Base class of the errors bqdash reports to the dashboard host.

Subclasses must not define their own constructor. Extra context goes in the
``extra_data`` keyword arguments, which have to be JSON serializable, so an
error can always be rendered as a dictionary:

>>> class TemplateError(SerializableException):
>>>     pass
>>>
>>> TemplateError("bad template", should_report=False, ref_id="A").to_dict()
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, TypedDict, Union

import rapidjson

# mypy has not figured out recursive types yet so this can't be totally typesafe
JsonSerializable = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]


class SerializableExceptionDict(TypedDict):
    __type__: str
    __name__: str
    __message__: str
    __extra_data__: Dict[str, JsonSerializable]
    __should_report__: bool


class SerializableException(Exception):
    def __init__(
        self,
        message: Optional[str] = None,
        should_report: bool = True,
        **extra_data: JsonSerializable,
    ) -> None:
        self.message = message or ""
        self.extra_data: Dict[str, JsonSerializable] = extra_data
        # whether or not the error should be reported to sentry
        self.should_report = should_report
        super().__init__(message)

    def to_dict(self) -> SerializableExceptionDict:
        return {
            "__type__": "SerializableException",
            "__name__": self.__class__.__name__,
            "__message__": self.message,
            "__should_report__": self.should_report,
            "__extra_data__": self.extra_data,
        }

    def __repr__(self) -> str:
        result: str = rapidjson.dumps(self.to_dict(), indent=2)
        return result
