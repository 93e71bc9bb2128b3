"""
kumo.config — Configuration loading and validation.

All configuration is external-only. Engine components receive the parsed
sections they need; nothing reads the environment directly.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml


class ErrorPolicy(str, Enum):
    IGNORE_FAILED = "IGNORE_FAILED"
    REJECT_EVERYTHING = "REJECT_EVERYTHING"
    REJECT_FAILED_ROWS = "REJECT_FAILED_ROWS"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_REMOTE_MEDIA_PATTERN = r"/thumbnail/([^/?#]+)/"


@dataclass
class ExecutionConfig:
    concurrency: int = 5
    chunk_size: int = 10
    chunk_delay_ms: int = 500
    error_policy: ErrorPolicy = ErrorPolicy.IGNORE_FAILED


@dataclass
class ApiConfig:
    url: str = ""
    token: str = ""
    timeout_seconds: int = 30


@dataclass
class RateLimitConfig:
    requests_per_second: int = 5
    burst: int = 10


@dataclass
class RetryConfig:
    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 15000


@dataclass
class MediaConfig:
    source_url_key: str = "kumo.source_url"
    remote_pattern: str = DEFAULT_REMOTE_MEDIA_PATTERN


@dataclass
class LoggingConfig:
    level: LogLevel = LogLevel.INFO


@dataclass
class KumoConfig:
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    media: MediaConfig = field(default_factory=MediaConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KumoConfig":
        """Parse configuration from a dictionary."""

        def parse_execution(d: dict) -> ExecutionConfig:
            return ExecutionConfig(
                concurrency=d.get("concurrency", 5),
                chunk_size=d.get("chunk_size", 10),
                chunk_delay_ms=d.get("chunk_delay_ms", 500),
                error_policy=ErrorPolicy(d.get("error_policy", "IGNORE_FAILED")),
            )

        def parse_api(d: dict) -> ApiConfig:
            return ApiConfig(
                url=d.get("url", ""),
                token=d.get("token", ""),
                timeout_seconds=d.get("timeout_seconds", 30),
            )

        def parse_rate_limit(d: dict) -> RateLimitConfig:
            return RateLimitConfig(
                requests_per_second=d.get("requests_per_second", 5),
                burst=d.get("burst", 10),
            )

        def parse_retry(d: dict) -> RetryConfig:
            return RetryConfig(
                max_attempts=d.get("max_attempts", 3),
                initial_delay_ms=d.get("initial_delay_ms", 1000),
                max_delay_ms=d.get("max_delay_ms", 15000),
            )

        def parse_media(d: dict) -> MediaConfig:
            return MediaConfig(
                source_url_key=d.get("source_url_key", "kumo.source_url"),
                remote_pattern=d.get("remote_pattern", DEFAULT_REMOTE_MEDIA_PATTERN),
            )

        def parse_logging(d: dict) -> LoggingConfig:
            return LoggingConfig(
                level=LogLevel(d.get("level", "info")),
            )

        return cls(
            execution=parse_execution(data.get("execution", {})),
            api=parse_api(data.get("api", {})),
            rate_limit=parse_rate_limit(data.get("rate_limit", {})),
            retry=parse_retry(data.get("retry", {})),
            media=parse_media(data.get("media", {})),
            logging=parse_logging(data.get("logging", {})),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "KumoConfig":
        """Load configuration from a YAML file."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.api.url:
            errors.append("api.url is required")
        if not self.api.token:
            errors.append("api.token is required")

        if self.execution.concurrency < 1:
            errors.append("execution.concurrency must be >= 1")

        if self.execution.chunk_size < 1:
            errors.append("execution.chunk_size must be >= 1")

        if self.execution.chunk_delay_ms < 0:
            errors.append("execution.chunk_delay_ms must be >= 0")

        if self.rate_limit.requests_per_second < 1:
            errors.append("rate_limit.requests_per_second must be >= 1")

        if self.retry.max_attempts < 1:
            errors.append("retry.max_attempts must be >= 1")

        try:
            re.compile(self.media.remote_pattern)
        except re.error as e:
            errors.append(f"media.remote_pattern is not a valid regex: {e}")

        return errors
