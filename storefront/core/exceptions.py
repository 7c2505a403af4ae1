# storefront/core/exceptions.py
"""
Storefront exceptions - standardized error handling for the request pipeline.

Errors fall into two families that must never be confused:

- validation/security rejections: the client sent something we refuse
  (4xx, request is rejected or continues without the offending part)
- service errors: an infrastructure dependency failed (5xx)

Benign absence (no session, no identity, stale identity) is not an error
and has no exception class.
"""

from typing import Optional, Dict, Any


class StorefrontError(Exception):
    """Base exception for all storefront errors"""

    status_code: int = 500
    infrastructure: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            details: Optional additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class StorefrontValidationError(StorefrontError):
    """Errors in input validation"""

    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize validation error.

        Args:
            message: Error description
            field: Field that failed validation
            value: Invalid value
            details: Additional validation context
        """
        super().__init__(message, details)
        self.field = field
        self.value = value

        if field:
            self.details['field'] = field
        if value is not None:
            self.details['value'] = str(value)


class UploadRejectedError(StorefrontValidationError):
    """A multipart request carried files the upload gate does not accept"""


class PayloadTooLargeError(UploadRejectedError):
    """The request body or the uploaded file is over the configured size limit"""

    status_code = 413


class LengthRequiredError(StorefrontValidationError):
    """A form body arrived without a Content-Length, so its size cannot be checked up front"""

    status_code = 411


class StorefrontSecurityError(StorefrontError):
    """Errors in security validation"""

    status_code = 403

    def __init__(
        self,
        message: str,
        error_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize security error.

        Args:
            message: Error description
            error_type: Type of security error (csrf, signature, ...)
            details: Additional security context
        """
        super().__init__(message, details)
        self.error_type = error_type

        if error_type:
            self.details['error_type'] = error_type


class CsrfError(StorefrontSecurityError):
    """Missing or invalid anti-forgery token on a mutating request"""

    def __init__(self, message: str = "Invalid CSRF token", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_type="csrf", details=details)


class StorefrontServiceError(StorefrontError):
    """Errors in external service interactions"""

    infrastructure = True

    def __init__(
        self,
        message: str,
        service_name: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize service error.

        Args:
            message: Error description
            service_name: Name of the failing service
            operation: Operation that failed
            details: Additional service context
        """
        super().__init__(message, details)
        self.service_name = service_name
        self.operation = operation

        if service_name:
            self.details['service'] = service_name
        if operation:
            self.details['operation'] = operation


class RedisServiceError(StorefrontServiceError):
    """Specific errors for Redis service interactions"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="Redis", operation=operation, details=details)
        self.key = key

        if key:
            self.details['key'] = key


class SessionStoreError(StorefrontServiceError):
    """The shared session store could not be read or written"""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="SessionStore", operation=operation, details=details)
        self.session_id = session_id

        if session_id:
            self.details['session_id'] = session_id[:8]


class IdentityStoreError(StorefrontServiceError):
    """The identity store failed; distinct from an identity not being found"""

    def __init__(
        self,
        message: str,
        identity_id: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="IdentityStore", operation=operation, details=details)
        self.identity_id = identity_id

        if identity_id:
            self.details['identity_id'] = identity_id


class ObjectStorageError(StorefrontServiceError):
    """Specific errors for object storage interactions"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        bucket: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="ObjectStorage", operation="put", details=details)
        self.key = key
        self.bucket = bucket

        if key:
            self.details['key'] = key
        if bucket:
            self.details['bucket'] = bucket


class StorefrontConfigurationError(StorefrontError):
    """Errors in system configuration and initialization"""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.component = component

        if component:
            self.details['component'] = component


# Shorter names
ServiceError = StorefrontServiceError
ConfigurationError = StorefrontConfigurationError
