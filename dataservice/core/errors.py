"""
Error taxonomy for the data service.

Every error raised by the service layer derives from DataServiceError and
carries an HTTP-style status code, a machine-readable type and an optional
data payload so it can be serialized unchanged by the HTTP surface or sent
back across a broker call.
"""

from typing import Any, Dict, Optional


class DataServiceError(Exception):
    """
    Base exception for all data service errors.

    Attributes:
        message: Human-readable error message
        code: HTTP-style status code (500 unless overridden)
        type: Machine-readable error type
        data: Optional payload with error details
    """

    code: int = 500
    type: str = ""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        type: Optional[str] = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if type is not None:
            self.type = type
        self.data = data

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize the error for transport.

        Returns:
            Dict with name, message, code, type and data
        """
        return {
            "name": self.name,
            "message": self.message,
            "code": self.code,
            "type": self.type,
            "data": self.data,
        }


class EntityNotFoundError(DataServiceError):
    """Raised when an identity-based lookup matches no record."""

    code = 404

    def __init__(self, id: Any):
        super().__init__("Entity not found", data={"id": id})
        self.id = id


class ValidationError(DataServiceError):
    """Raised when entity validation fails prior to a write."""

    code = 422
    type = "VALIDATION_ERROR"

    def __init__(self, message: str = "Entity validation error!", data: Any = None):
        super().__init__(message, data=data)


class InvalidRequestError(DataServiceError):
    """Raised when action parameters are malformed."""

    code = 400
    type = "INVALID_REQUEST"


class ConfigurationError(DataServiceError):
    """Raised when service or relation configuration is invalid."""

    type = "CONFIGURATION_ERROR"


class ConnectionNotFoundError(DataServiceError):
    """Raised when a logical connection name is not registered."""

    type = "CONNECTION_NOT_FOUND"

    def __init__(self, name: str):
        super().__init__(
            f'Connection "{name}" was not found.', data={"name": name}
        )
        self.connection_name = name


class AlreadyHasActiveConnectionError(DataServiceError):
    """Raised when creating a connection whose name is already initialized."""

    type = "ALREADY_ACTIVE_CONNECTION"

    def __init__(self, name: str):
        super().__init__(
            f'Cannot create a new connection named "{name}", because '
            f"connection with such name already exist and it now has an "
            f"active connection session.",
            data={"name": name},
        )
        self.connection_name = name


class ServiceNotFoundError(DataServiceError):
    """Raised when a broker cannot resolve an action's service."""

    code = 404
    type = "SERVICE_NOT_FOUND"

    def __init__(self, action: str):
        super().__init__(f"Service '{action}' is not found.", data={"action": action})


class RemoteCallError(DataServiceError):
    """Raised when a remote action call returns an error payload."""

    code = 502
    type = "REMOTE_CALL_ERROR"
