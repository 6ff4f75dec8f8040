"""
Bitbucket Server Platform Configuration

Environment-based settings for the platform adapter: server endpoint,
credentials, automation identity and REST API tuning.
"""

from enum import Enum
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file into environment variables so os.getenv() works
load_dotenv()


class LogLevel(str, Enum):
    """Logging levels for the platform adapter."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BitbucketAPIConfig(BaseModel):
    """REST API request configuration."""

    page_size: int = Field(
        default=100,
        description="Page size used for paginated list endpoints",
        ge=1,
        le=1000
    )
    max_pages: int = Field(
        default=500,
        description="Maximum pages to follow for a single listing",
        ge=1,
        le=10_000
    )
    request_timeout: int = Field(
        default=60,
        description="Individual request timeout in seconds",
        ge=5,
        le=300
    )
    user_agent: str = Field(
        default="bbs-platform/1.0",
        description="User agent for API requests"
    )

    # Fast-path disabled check
    config_file_name: str = Field(
        default="renovate.json",
        description="Repository config file probed by the disabled check"
    )
    config_file_line_limit: int = Field(
        default=20_000,
        description="Line limit requested when browsing the config file",
        ge=1,
        le=100_000
    )

    # PR bodies
    max_body_length: int = Field(
        default=30_000,
        description="Maximum characters in a pull request description",
        ge=1000,
        le=100_000
    )


class PlatformSettings(BaseSettings):
    """Main configuration settings for the Bitbucket Server adapter."""

    # Only variables prefixed with `BBS_` are read, so unrelated `.env` keys
    # are ignored instead of rejected as "extra".
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        env_prefix="BBS_",
        extra="ignore",
    )

    # ============================================================================
    # CORE CONFIGURATION
    # ============================================================================

    environment: str = Field(
        default="development",
        description="Deployment environment"
    )
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level"
    )

    # ============================================================================
    # SERVER CONFIGURATION
    # ============================================================================

    endpoint: Optional[str] = Field(
        default=None,
        description="Bitbucket Server base URL, optionally with a path prefix"
    )
    username: Optional[str] = Field(
        default=None,
        description="Username for basic authentication"
    )
    password: Optional[str] = Field(
        default=None,
        description="Password or HTTP access token for basic authentication"
    )

    # ============================================================================
    # AUTOMATION IDENTITY
    # ============================================================================

    git_author_name: Optional[str] = Field(
        default=None,
        description="Name of the automation's git identity"
    )
    git_author_email: Optional[str] = Field(
        default=None,
        description="Email of the automation's git identity, used for rebase checks"
    )

    api: BitbucketAPIConfig = Field(
        default_factory=BitbucketAPIConfig,
        description="REST API configuration"
    )

    @validator("endpoint")
    def validate_endpoint(cls, v):
        """Validate the endpoint is an http(s) URL."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("Endpoint must be an http:// or https:// URL")
        return v


# ============================================================================
# CONFIGURATION FACTORY
# ============================================================================

def get_platform_settings() -> PlatformSettings:
    """
    Get platform settings with environment-based overrides.

    Environment variables can override any setting using double underscore notation:
    - BBS_ENDPOINT=https://bitbucket.example.com/
    - BBS_API__PAGE_SIZE=50
    - BBS_API__REQUEST_TIMEOUT=30
    """
    return PlatformSettings()


# Initialize global settings - can be overridden by tests
platform_settings = get_platform_settings()
