"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- YAML file loading with defaults
- Environment variable overrides for connection settings

Credentials are never read from the configuration file or the environment.
The new role's password only ever arrives on the command line.
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from odoo_restore.core.exceptions import ConfigurationError


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/odoo-restore/config.yaml")
DEFAULT_INSTANCE_CONFIG_PATH = Path("/etc/odoo/odoo.conf")
DEFAULT_DATA_DIR = Path("/var/lib/odoo")
DEFAULT_AUDIT_LOG_PATH = Path("/var/log/odoo-restore/audit.log")

# information_schema LIKE pattern for Odoo's cache/registry signaling sequences
DEFAULT_SIGNALING_PATTERN = r"base\_%signaling%"


class PostgresConfig(BaseModel):
    """PostgreSQL connection settings."""

    host: str = "127.0.0.1"
    port: int = 5432
    admin_user: str = "postgres"
    admin_database: str = "postgres"

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v


class InstanceConfig(BaseModel):
    """Where the application instance keeps its state."""

    config_path: Path = DEFAULT_INSTANCE_CONFIG_PATH
    default_data_dir: Path = DEFAULT_DATA_DIR
    stale_dirs: list[str] = Field(default_factory=lambda: ["sessions", "addons"])

    @field_validator("default_data_dir")
    @classmethod
    def validate_data_dir(cls, v: Path) -> Path:
        if not v.is_absolute():
            raise ValueError("default_data_dir must be an absolute path")
        return v

    @field_validator("stale_dirs")
    @classmethod
    def validate_stale_dirs(cls, v: list[str]) -> list[str]:
        for name in v:
            if not name or "/" in name or name in (".", "..", "filestore"):
                raise ValueError(f"Invalid stale directory name: {name!r}")
        return v


class ProvisionerConfig(BaseModel):
    """External helpers for dropping and creating the role/database pair.

    When both scripts are set they are used instead of the built-in
    psql implementation:
        delete_script <db_user> <db_name>
        create_script <db_user> <db_name> <db_password>
    """

    delete_script: Optional[Path] = None
    create_script: Optional[Path] = None

    @property
    def scripts(self) -> Optional[tuple[Path, Path]]:
        """(delete_script, create_script) when both are configured."""
        if self.delete_script is None or self.create_script is None:
            return None
        return self.delete_script, self.create_script


class CleanupConfig(BaseModel):
    """Post-restore cleanup settings."""

    signaling_pattern: str = DEFAULT_SIGNALING_PATTERN

    @field_validator("signaling_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        if not v or "'" in v:
            raise ValueError("signaling_pattern must be a non-empty LIKE pattern without quotes")
        return v


class AuditConfig(BaseModel):
    """Audit log settings."""

    enabled: bool = True
    log_path: Path = DEFAULT_AUDIT_LOG_PATH


class ToolConfig(BaseModel):
    """Root configuration model, loaded from /etc/odoo-restore/config.yaml."""

    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    instance: InstanceConfig = Field(default_factory=InstanceConfig)
    provisioner: ProvisionerConfig = Field(default_factory=ProvisionerConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @classmethod
    def load(cls, path: Path) -> "ToolConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Omit --config to use built-in defaults",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {path}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "ToolConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()


class EnvironmentOverrides(BaseSettings):
    """Connection overrides loaded from ODOO_RESTORE_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="ODOO_RESTORE_", extra="ignore")

    pg_host: Optional[str] = None
    pg_port: Optional[int] = None
    pg_admin_user: Optional[str] = None
    audit_log: Optional[Path] = None


class AppConfig:
    """Application configuration combining config file and environment.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[ToolConfig] = None,
        overrides: Optional[EnvironmentOverrides] = None,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (uses default if None)
            config: Pre-loaded config (skips file loading if provided)
            overrides: Pre-loaded overrides (reads environment if None)
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or ToolConfig.load_or_default(self.config_path)
        self._apply_overrides(overrides or EnvironmentOverrides())

    def _apply_overrides(self, overrides: EnvironmentOverrides) -> None:
        postgres = self._config.postgres.model_dump()
        if overrides.pg_host:
            postgres["host"] = overrides.pg_host
        if overrides.pg_port:
            postgres["port"] = overrides.pg_port
        if overrides.pg_admin_user:
            postgres["admin_user"] = overrides.pg_admin_user

        try:
            self._config.postgres = PostgresConfig(**postgres)
        except Exception as e:
            raise ConfigurationError(
                "Invalid ODOO_RESTORE_* environment override",
                details=[str(e)],
            ) from e

        if overrides.audit_log:
            self._config.audit.log_path = overrides.audit_log

    @property
    def config(self) -> ToolConfig:
        """Get the tool configuration."""
        return self._config

    @property
    def postgres(self) -> PostgresConfig:
        """Shortcut to PostgreSQL config."""
        return self._config.postgres

    @property
    def instance(self) -> InstanceConfig:
        """Shortcut to instance config."""
        return self._config.instance

    @property
    def provisioner(self) -> ProvisionerConfig:
        """Shortcut to provisioner config."""
        return self._config.provisioner

    @property
    def cleanup(self) -> CleanupConfig:
        """Shortcut to cleanup config."""
        return self._config.cleanup

    @property
    def audit(self) -> AuditConfig:
        """Shortcut to audit config."""
        return self._config.audit
