from bqdash.utils.serializable_exception import SerializableException


class InvalidQueryException(SerializableException):
    """
    Common parent class for queries that cannot be rendered or sent.
    This should not be used for system errors.
    """


class MacroSyntaxError(InvalidQueryException):
    """
    A macro call in the query text could not be parsed. The query it belongs
    to is never sent.
    """


class DatasourceError(SerializableException):
    pass
