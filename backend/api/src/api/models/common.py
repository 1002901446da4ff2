"""Shared API request/response models.

Common models used across several endpoints: the error body, the request
validation error body and the generic success message. Domain models live
in shared.models.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shared.models.errors import ERROR_MESSAGES, ERROR_RECOVERY, ErrorCode, ErrorResponse

__all__ = [
    "ErrorCode",
    "ErrorResponse",
    "SuccessMessage",
    "ValidationErrorDetail",
    "ValidationErrorResponse",
    "format_validation_errors",
]


class ValidationErrorDetail(BaseModel):
    """Detail of a single validation error."""

    model_config = ConfigDict(strict=True)

    loc: list[str] = Field(
        ...,
        description="Path to the field that failed validation",
        examples=[["body", "items", "0", "quantity"]],
    )
    msg: str = Field(
        ...,
        description="Human-readable error message",
        examples=["Input should be greater than or equal to 1"],
    )
    type: str = Field(
        ...,
        description="Error type identifier",
        examples=["greater_than_equal"],
    )


class ValidationErrorResponse(BaseModel):
    """Response body for request validation errors (HTTP 400).

    Same top-level shape as ErrorResponse, with per-field details.
    """

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: str = ErrorCode.VALIDATION_FAILED.value
    message: str = ERROR_MESSAGES[ErrorCode.VALIDATION_FAILED]
    recovery: str = ERROR_RECOVERY[ErrorCode.VALIDATION_FAILED]
    retryable: bool = False
    details: list[ValidationErrorDetail] = Field(default_factory=list)


class SuccessMessage(BaseModel):
    """Generic success response for operations without data payload."""

    model_config = ConfigDict(strict=True)

    success: bool = True
    message: str = Field(
        default="Operation completed successfully",
        description="Human-readable success message",
    )


def format_validation_errors(errors: list[dict[str, Any]]) -> ValidationErrorResponse:
    """Convert Pydantic validation errors to ValidationErrorResponse.

    Args:
        errors: List of error dicts from RequestValidationError.errors()

    Returns:
        ValidationErrorResponse ready for JSON serialization.
    """
    details = [
        ValidationErrorDetail(
            loc=[str(loc) for loc in error.get("loc", [])],
            msg=str(error.get("msg", "")),
            type=str(error.get("type", "")),
        )
        for error in errors
    ]
    return ValidationErrorResponse(details=details)
