class ExceptionWithMessage(Exception):
    """A base class for all errors with a message"""

    @property
    def message(self) -> str:
        """
        Returns the message for the exception.

        :return str: The message string.
        """
        return self.args[0] if len(self.args) > 0 else "<no message>"


class ModelDefinitionError(ExceptionWithMessage):
    """Raised when a model or one of its attributes is declared incorrectly."""

    pass


class ObjectIdRebindError(ExceptionWithMessage):
    """Raised when an attribute already bound to an object id is given another."""

    pass


class ObjectIdNotSetError(ExceptionWithMessage):
    """Raised when a persistence operation runs on an attribute with no object id."""

    pass


class QueryBuildError(ExceptionWithMessage):
    """Raised when a query is assembled with invalid arguments."""

    pass


class QueryConsumedError(ExceptionWithMessage):
    """Raised when a query that has already been executed is used again."""

    pass


class NotFoundError(ExceptionWithMessage):
    """Raised when a required row or resource could not be found."""

    pass


class AuthorisationError(ExceptionWithMessage):
    """Raised when the request context is not allowed to access a resource."""

    pass
