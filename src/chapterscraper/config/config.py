"""
Configuration management for chapterscraper using Pydantic.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chapterscraper.errors import ConfigurationError

log = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_SELECTOR = "main, article, .content, .post-content, .entry-content, #content"

DEFAULT_FILTER_PATTERNS = [
    "window.",  # inline JavaScript
    "document.",
    "function(",
    "Advertisement",
    "Subscribe",
    "Cookie",
    "Privacy Policy",
    "Terms of Service",
    "Sign up",
    "Log in",
]


class ScraperConfig(BaseSettings):
    """Runtime settings, validated once before the scraper starts."""

    max_concurrent_tasks: int = Field(
        default=8, ge=1, le=50, description="Maximum number of concurrent scraping tasks."
    )
    task_delay_ms: int = Field(
        default=250, ge=50, description="Delay between dispatching tasks, in milliseconds."
    )
    request_timeout_secs: float = Field(
        default=45.0, gt=0, le=300, description="HTTP request timeout in seconds."
    )
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent string for HTTP requests.")

    input_file: Path = Field(default=Path("./out/links.csv"), description="CSV file of url,chapter_number rows.")
    output_dir: Path = Field(default=Path("./out"), description="Directory receiving one file per chapter.")
    file_prefix: str = Field(default="chapter", description="Output file name prefix.")
    file_extension: str = Field(default="txt", description="Output file extension, without the dot.")

    selector: str = Field(default=DEFAULT_SELECTOR, description="Comma-separated CSS selectors, tried in order.")
    skip_text_nodes: int = Field(default=2, ge=0, description="Leading text nodes to skip in the matched element.")
    filter_patterns: List[str] = Field(
        default_factory=lambda: list(DEFAULT_FILTER_PATTERNS),
        description="Text nodes containing any of these substrings are dropped.",
    )
    min_content_length: int = Field(
        default=100, ge=0, description="Extracted text shorter than this is treated as a failure."
    )
    min_existing_file_bytes: int = Field(
        default=1, ge=0, description="Existing output files at least this large are skipped."
    )

    max_retries: int = Field(default=3, ge=0, description="Retry attempts for recoverable failures.")
    retry_base_delay_secs: float = Field(default=1.0, ge=0, description="Base delay of the exponential backoff.")

    verbose: bool = Field(default=False, description="Enable verbose output.")
    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: Optional[Path] = Field(default=None, description="Write JSON logs to this file instead of the console.")

    model_config = SettingsConfigDict(env_prefix="CHAPTERSCRAPER_", case_sensitive=False)

    @field_validator("selector", "user_agent", "file_prefix", "file_extension")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("file_extension")
    @classmethod
    def strip_leading_dot(cls, v: str) -> str:
        return v.lstrip(".")

    @field_validator("log_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return level

    @property
    def task_delay(self) -> float:
        """Dispatch delay in seconds."""
        return self.task_delay_ms / 1000.0

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> ScraperConfig:
        try:
            config = cls(**data)
        except ValidationError as e:
            raise ConfigurationError(_describe_validation_error(e)) from e
        config.warn_about_missing_input()
        return config

    @classmethod
    def from_file(cls, path: Path) -> ScraperConfig:
        """Load configuration from a YAML or TOML file."""
        path = Path(path)
        log.debug("Loading configuration from file: %s", path)
        if not path.is_file():
            raise ConfigurationError(f"Configuration file not found or is not a file: {path}")

        try:
            if path.suffix == ".toml":
                with open(path, "rb") as f:
                    data = tomllib.load(f)
            else:
                with open(path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
        except (OSError, tomllib.TOMLDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e

        if not data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping at the top level")
        return cls.from_mapping(data)

    def with_overrides(self, **overrides: Any) -> ScraperConfig:
        """Return a re-validated copy with the non-None overrides applied."""
        data = self.model_dump()
        data.update({key: value for key, value in overrides.items() if value is not None})
        return type(self).from_mapping(data)

    def save_to_file(self, path: Path) -> None:
        """Write the configuration as YAML; TOML files can be read but not written."""
        path = Path(path)
        if path.suffix == ".toml":
            raise ConfigurationError(f"Cannot write {path}: configuration files are saved as YAML (.yaml/.yml)")
        data = self.model_dump(mode="json")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
        except OSError as e:
            raise ConfigurationError(f"Failed to write config file {path}: {e}") from e

    @classmethod
    def create_sample_config(cls, path: Path) -> None:
        cls().save_to_file(path)

    def warn_about_missing_input(self) -> None:
        if not self.input_file.exists():
            log.warning("Input file %s does not exist", self.input_file)


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "config"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def load_config(path: Optional[Path] = None, **overrides: Any) -> ScraperConfig:
    """Load the file (falling back to defaults if it cannot be read) and apply overrides."""
    if path is not None:
        try:
            base = ScraperConfig.from_file(path)
        except ConfigurationError as e:
            log.warning("Failed to load config file: %s. Using default configuration.", e)
            base = ScraperConfig.from_mapping({})
    else:
        base = ScraperConfig.from_mapping({})
    return base.with_overrides(**overrides)
