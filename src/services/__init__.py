"""
Services Package
Business logic layer for the comment analysis pipeline

Stages and the job state machine are re-exported here. The orchestrator
and AnalysisService depend on repositories (which import this package's
exceptions), so import them from their own modules.
"""

from .comment_filter import CommentFilter
from .job_lifecycle import JobLifecycle
from .retry import RetryExhaustedError, RetryPolicy, execute_with_retry
from .sentiment_stage import SentimentStage
from .summary_stage import SummaryStage
from .theme_stage import ThemeStage
from .exceptions import (
    # Base
    ServiceError,

    # Input Errors
    ValidationError,
    ResourceNotFoundError,
    PermissionDeniedError,
    TooManyRequestsError,

    # External Service Errors
    ExternalServiceError,
    RateLimitExceededError,

    # Processing Errors
    ProcessingError,
    AnalysisError,

    # Database Errors
    DatabaseError,
    TransactionError,

    # Job Errors
    JobError,
    JobNotFoundError,
    InvalidJobStateError,
    RetryLimitExceededError,
    JobCancelledError,

    # Configuration Errors
    ConfigurationError,

    # Utility Functions
    is_rate_limit_error,
    is_retryable_error,
    get_retry_delay,
)

__all__ = [
    # Stages
    "CommentFilter",
    "SentimentStage",
    "ThemeStage",
    "SummaryStage",
    "JobLifecycle",

    # Retry
    "RetryPolicy",
    "RetryExhaustedError",
    "execute_with_retry",

    # Base Exception
    "ServiceError",

    # Input Errors
    "ValidationError",
    "ResourceNotFoundError",
    "PermissionDeniedError",
    "TooManyRequestsError",

    # External Service Errors
    "ExternalServiceError",
    "RateLimitExceededError",

    # Processing Errors
    "ProcessingError",
    "AnalysisError",

    # Database Errors
    "DatabaseError",
    "TransactionError",

    # Job Errors
    "JobError",
    "JobNotFoundError",
    "InvalidJobStateError",
    "RetryLimitExceededError",
    "JobCancelledError",

    # Configuration Errors
    "ConfigurationError",

    # Utility Functions
    "is_rate_limit_error",
    "is_retryable_error",
    "get_retry_delay",
]

# Package metadata
__version__ = "0.1.0"
__description__ = "Service layer for the comment insight pipeline"
