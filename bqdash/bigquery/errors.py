from bqdash.utils.serializable_exception import SerializableException


class TransportError(SerializableException):
    """
    Raised by executors when the warehouse could not be reached or answered
    with an HTTP error. ``status``, ``status_text`` and ``data`` (the decoded
    error body when there is one) are available in ``extra_data``.
    """

    @property
    def status(self) -> int:
        status = self.extra_data.get("status")
        return status if isinstance(status, int) else 0

    @property
    def status_text(self) -> str:
        return str(self.extra_data.get("status_text") or "")

    @property
    def data(self) -> object:
        return self.extra_data.get("data")
