"""
Configuration for the Google Voice takeout archiver.

Values come from, in increasing priority: defaults, a ``.env`` file,
environment variables with the ``GVOICE_ARCHIVE_`` prefix, and command line
options (applied by the CLI as keyword overrides).
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """
    Settings model for the archiver.

    Example:
        config = AppConfig(processing_dir="~/Takeout/Voice", output_format="sqlite")
        print(config.database_path)
    """

    model_config = SettingsConfigDict(
        env_prefix="GVOICE_ARCHIVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_default=True,
        str_strip_whitespace=True,
        case_sensitive=False,
    )

    # ====================================================================
    # PROCESSING SETTINGS
    # ====================================================================

    processing_dir: Path = Field(
        default=Path("."),
        description="Directory containing the exported Google Voice HTML files"
    )

    output_format: Literal["json", "sqlite"] = Field(
        default="json",
        description="Output format: json (one object per line) or sqlite"
    )

    output_file: str = Field(
        default="-",
        description="JSON output file; '-' writes to standard output"
    )

    database_path: Path = Field(
        default=Path("conversations.db"),
        description="SQLite database used by the sqlite format and by group queries"
    )

    capture_media: bool = Field(
        default=True,
        description="Store the bytes of resolvable MMS attachments in the database"
    )

    media_dir: Optional[Path] = Field(
        default=None,
        description="Directory searched for attachment files (default: processing_dir)"
    )

    max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Number of worker threads used for extraction"
    )

    # ====================================================================
    # LOGGING SETTINGS
    # ====================================================================

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Set specific log level"
    )

    log_filename: Optional[str] = Field(
        default=None,
        description="Log file written next to the output (console only when unset)"
    )

    verbose: bool = Field(
        default=False,
        description="Enable verbose logging (INFO level)"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug logging (DEBUG level)"
    )

    # ====================================================================
    # VALIDATORS
    # ====================================================================

    @field_validator('processing_dir', 'media_dir', mode='before')
    @classmethod
    def validate_directory(cls, v):
        """Convert string to Path and resolve to absolute path."""
        if v is None:
            return v
        if isinstance(v, str):
            v = Path(v)
        if isinstance(v, Path):
            return v.expanduser().resolve()
        return v

    @field_validator('database_path', mode='before')
    @classmethod
    def validate_database_path(cls, v):
        if isinstance(v, str):
            v = Path(v)
        if isinstance(v, Path):
            return v.expanduser()
        return v

    @model_validator(mode='after')
    def validate_cli_conflicts(self):
        """Validate that logging options don't conflict with each other."""
        if self.verbose and self.debug:
            raise ValueError(
                "Conflicting options: --verbose and --debug cannot be used together.\n"
                "  • --verbose sets logging to INFO level\n"
                "  • --debug sets logging to DEBUG level (includes verbose)"
            )
        return self

    # ====================================================================
    # COMPUTED PROPERTIES
    # ====================================================================

    @property
    def effective_log_level(self) -> str:
        """Get the effective log level considering debug/verbose flags."""
        if self.debug:
            return 'DEBUG'
        elif self.verbose:
            return 'INFO'
        return self.log_level

    @property
    def effective_media_dir(self) -> Path:
        return self.media_dir or self.processing_dir

    @property
    def writes_to_stdout(self) -> bool:
        return self.output_format == "json" and self.output_file == "-"

    def get_log_file_path(self) -> Optional[Path]:
        if not self.log_filename:
            return None
        return Path(self.log_filename).expanduser()

    def get_validation_errors(self) -> list:
        """Get a list of problems with the processing directory."""
        errors = []
        if not self.processing_dir.exists():
            errors.append(f"Processing directory does not exist: {self.processing_dir}")
        elif not self.processing_dir.is_dir():
            errors.append(f"Processing path is not a directory: {self.processing_dir}")
        elif not any(self.processing_dir.rglob("*.html")):
            errors.append(f"No HTML files found in processing directory: {self.processing_dir}")
        return errors

    def to_dict(self) -> dict:
        """Convert configuration to dictionary for serialization."""
        return self.model_dump(exclude_none=True)


def create_config(**overrides) -> AppConfig:
    """
    Create a configuration, letting explicit overrides win over the environment.

    ``None`` overrides are ignored so unset CLI options fall through.
    """
    return AppConfig(**{key: value for key, value in overrides.items() if value is not None})
