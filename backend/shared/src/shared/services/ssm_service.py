"""SSM Parameter Store service for secure secret retrieval.

Provides cached access to AWS SSM Parameter Store SecureString parameters.
Used for payment gateway credentials (app ids, HMAC secrets, resource keys)
when they are not supplied through environment variables.
"""

import logging
from functools import lru_cache
from typing import ClassVar

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class SSMServiceError(Exception):
    """Raised when SSM parameter retrieval fails."""

    pass


class SSMParameterNotFound(SSMServiceError):
    """Raised when the requested parameter does not exist."""


class SSMService:
    """Service for retrieving secrets from AWS SSM Parameter Store.

    Features:
    - Retrieves SecureString parameters with automatic decryption
    - In-process caching to avoid repeated API calls
    - Environment-aware parameter paths

    Usage:
        ssm = SSMService()
        secret = ssm.get_parameter("/checkout/dev/eazypay/secret_key")
        app_id = ssm.get_optional_parameter("/checkout/dev/eazypay/app_id")
    """

    _instance: ClassVar["SSMService | None"] = None
    _cache: ClassVar[dict[str, str]] = {}

    def __init__(self) -> None:
        """Initialize the SSM client."""
        self._client = boto3.client("ssm")

    @classmethod
    def get_instance(cls) -> "SSMService":
        """Get singleton instance of SSMService.

        Returns:
            SSMService: Shared service instance.
        """
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def get_parameter(self, name: str) -> str:
        """Retrieve a parameter value from SSM Parameter Store.

        Args:
            name: Full parameter path (e.g., "/checkout/dev/benefit/resource_key")

        Returns:
            The decrypted parameter value, cached for the life of the process.

        Raises:
            SSMParameterNotFound: If the parameter does not exist.
            SSMServiceError: If the parameter cannot be retrieved.
        """
        if name in self._cache:
            logger.debug("SSM cache hit for %s", name)
            return self._cache[name]

        try:
            logger.info("Fetching SSM parameter: %s", name)
            response = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ParameterNotFound":
                raise SSMParameterNotFound(f"SSM parameter not found: {name}") from e
            if error_code == "AccessDeniedException":
                raise SSMServiceError(
                    f"Access denied to SSM parameter: {name}. "
                    "Check IAM permissions for ssm:GetParameter."
                ) from e
            raise SSMServiceError(
                f"Failed to retrieve SSM parameter {name}: {e}"
            ) from e

        value = response["Parameter"]["Value"]
        self._cache[name] = value
        return value

    def get_optional_parameter(self, name: str) -> str | None:
        """Like :meth:`get_parameter`, but None when the parameter does not exist.

        Missing gateway credentials are a configuration state, not a fault;
        access errors still raise.
        """
        try:
            return self.get_parameter(name)
        except SSMParameterNotFound:
            logger.info("SSM parameter not set: %s", name)
            return None


@lru_cache(maxsize=1)
def get_ssm_service() -> SSMService:
    """Get the shared SSMService instance (singleton pattern).

    This function uses lru_cache to ensure only one instance is created,
    even across multiple imports.

    Returns:
        SSMService: Shared service instance.
    """
    return SSMService.get_instance()
