# src/services/exceptions.py
"""
Service Layer Exceptions
Error taxonomy shared by pipeline stages, job lifecycle and repositories
"""

from typing import Any, Dict, List, Optional


# ============================================================================
# Base
# ============================================================================


class ServiceError(Exception):
    """
    Base class for all service errors

    Attributes:
        message: Human readable message
        code: Stable machine readable code
        details: Extra context for callers
    """

    code = "SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# ============================================================================
# Input Errors (never retried)
# ============================================================================


class ValidationError(ServiceError):
    """Invalid or insufficient input"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or [message]
        self.details.setdefault("errors", self.errors)


class ResourceNotFoundError(ServiceError):
    code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"{resource_type} not found: {resource_id}",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class PermissionDeniedError(ServiceError):
    code = "PERMISSION_DENIED"


class TooManyRequestsError(ServiceError):
    """Client exceeded its analysis submission allowance"""

    code = "TOO_MANY_REQUESTS"

    def __init__(self, client_id: str, retry_after: Optional[float] = None):
        super().__init__(
            "Too many analysis requests, please try again later",
            details={"client_id": client_id, "retry_after": retry_after},
        )
        self.client_id = client_id
        self.retry_after = retry_after


# ============================================================================
# External Service Errors (transient, absorbed by retry + fallback)
# ============================================================================


class ExternalServiceError(ServiceError):
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        service_name: str,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ):
        super().__init__(
            f"{service_name}: {message}",
            details={"service": service_name, "status_code": status_code},
        )
        self.service_name = service_name
        self.status_code = status_code
        self.retryable = retryable


class RateLimitExceededError(ExternalServiceError):
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, service_name: str, retry_after: Optional[float] = None):
        super().__init__(service_name, "rate limit or quota exceeded", status_code=429)
        self.retry_after = retry_after


class ConfigurationError(ServiceError):
    code = "CONFIGURATION_ERROR"


# ============================================================================
# Processing Errors
# ============================================================================


class ProcessingError(ServiceError):
    code = "PROCESSING_ERROR"


class AnalysisError(ProcessingError):
    code = "ANALYSIS_ERROR"


# ============================================================================
# Database Errors (fatal for the job)
# ============================================================================


class DatabaseError(ServiceError):
    code = "DATABASE_ERROR"


class TransactionError(DatabaseError):
    code = "TRANSACTION_ERROR"


# ============================================================================
# Job Lifecycle Errors
# ============================================================================


class JobError(ServiceError):
    code = "JOB_ERROR"


class JobNotFoundError(JobError):
    code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        super().__init__("Job not found", details={"job_id": job_id})
        self.job_id = job_id


class InvalidJobStateError(JobError):
    code = "INVALID_JOB_STATE"


class RetryLimitExceededError(JobError):
    code = "RETRY_LIMIT_EXCEEDED"

    def __init__(self, job_id: str, max_retries: int):
        super().__init__(
            "Maximum retry attempts exceeded",
            details={"job_id": job_id, "max_retries": max_retries},
        )


class JobCancelledError(JobError):
    """Raised between stages once a job was cancelled"""

    code = "JOB_CANCELLED"

    def __init__(self, job_id: str):
        super().__init__("Job was cancelled", details={"job_id": job_id})
        self.job_id = job_id


# ============================================================================
# Utility Functions
# ============================================================================


def is_rate_limit_error(error: BaseException) -> bool:
    """Rate limit by type, or by a provider message mentioning rate limit / quota"""
    if isinstance(error, RateLimitExceededError):
        return True
    message = str(error).lower()
    return "rate limit" in message or "quota" in message


def is_retryable_error(error: BaseException) -> bool:
    """
    Decide whether a failed external call is worth another attempt

    Any failure is retried except input, lifecycle, database and
    configuration errors, and provider errors flagged as permanent.
    """
    if isinstance(error, ExternalServiceError):
        return error.retryable
    return not isinstance(
        error,
        (
            ValidationError,
            ResourceNotFoundError,
            PermissionDeniedError,
            TooManyRequestsError,
            ConfigurationError,
            JobError,
            DatabaseError,
        ),
    )


def get_retry_delay(
    error: BaseException,
    attempt: int,
    base_delay: float = 1.0,
    backoff_factor: float = 2.0,
    rate_limit_multiplier: float = 5.0,
) -> float:
    """
    Exponential backoff delay (without jitter) before the next attempt

    Args:
        error: Error from the failed attempt
        attempt: 1-based number of the attempt that failed
        base_delay: Base delay in seconds
        backoff_factor: Growth factor per attempt
        rate_limit_multiplier: Base delay multiplier for rate limit errors

    Returns:
        Delay in seconds
    """
    base = base_delay * rate_limit_multiplier if is_rate_limit_error(error) else base_delay
    return base * (backoff_factor ** (attempt - 1))
