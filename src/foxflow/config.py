# ABOUTME: Configuration management for foxflow migrations
# ABOUTME: Defines MigrationConfig with storage paths, naming and validation settings

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from foxflow.exceptions import ConfigurationError

SUPPORTED_STORAGE_DIGESTS = ("sha512", "sha256")


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MigrationConfig:
    """Configuration for one migration run."""

    target_dir: str = "~/foxflow"
    id_prefix: str = "info:fedora/"
    local_server: str = "localhost:8080"
    digest_algorithm: str = "sha512"
    validate_checksums: bool = True
    add_datastream_extensions: bool = False
    delete_inactive: bool = False
    import_external: bool = False
    import_redirect: bool = False
    rich_descriptions: bool = False
    user: str = "fedoraAdmin"
    user_uri: str = "info:fedora/fedoraAdmin"
    version_message: str = "Generated by foxflow"
    migration_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_env(cls) -> "MigrationConfig":
        """Create config from FOXFLOW_* environment variables."""
        config = cls(
            target_dir=os.environ.get("FOXFLOW_TARGET_DIR", "~/foxflow"),
            id_prefix=os.environ.get("FOXFLOW_ID_PREFIX", "info:fedora/"),
            local_server=os.environ.get("FOXFLOW_LOCAL_SERVER", "localhost:8080"),
            digest_algorithm=os.environ.get("FOXFLOW_DIGEST_ALGORITHM", "sha512"),
            validate_checksums=_env_flag("FOXFLOW_VALIDATE_CHECKSUMS", True),
            add_datastream_extensions=_env_flag("FOXFLOW_DATASTREAM_EXTENSIONS", False),
            delete_inactive=_env_flag("FOXFLOW_DELETE_INACTIVE", False),
            import_external=_env_flag("FOXFLOW_IMPORT_EXTERNAL", False),
            import_redirect=_env_flag("FOXFLOW_IMPORT_REDIRECT", False),
            rich_descriptions=_env_flag("FOXFLOW_RICH_DESCRIPTIONS", False),
            user=os.environ.get("FOXFLOW_USER", "fedoraAdmin"),
            user_uri=os.environ.get("FOXFLOW_USER_URI", "info:fedora/fedoraAdmin"),
        )
        fixed_time = os.environ.get("FOXFLOW_MIGRATION_TIME")
        if fixed_time:
            try:
                config.migration_time = datetime.fromisoformat(fixed_time.replace("Z", "+00:00"))
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid FOXFLOW_MIGRATION_TIME: {fixed_time}",
                    recovery_hint="Use an ISO-8601 timestamp such as 2024-01-01T00:00:00Z",
                ) from e
        return config

    def validate(self) -> None:
        """Check settings that must be sound before any object is processed.

        Raises:
            ConfigurationError: If a setting is unsupported or malformed
        """
        if self.digest_algorithm not in SUPPORTED_STORAGE_DIGESTS:
            raise ConfigurationError(
                f"Unsupported storage digest algorithm: {self.digest_algorithm}",
                recovery_hint=f"Use one of: {', '.join(SUPPORTED_STORAGE_DIGESTS)}",
            )
        if not self.id_prefix:
            raise ConfigurationError("id_prefix must not be empty")
        if not self.user:
            raise ConfigurationError("A migration user is required")
        if self.migration_time.tzinfo is None:
            raise ConfigurationError(
                "migration_time must be timezone-aware",
                recovery_hint="Attach a tzinfo, for example timezone.utc",
            )

    def resolve_target_dir(self) -> Path:
        """Resolve and expand the target directory."""
        return Path(self.target_dir).expanduser().resolve()

    @property
    def storage_dir(self) -> Path:
        return self.resolve_target_dir() / "ocfl"

    @property
    def staging_dir(self) -> Path:
        return self.resolve_target_dir() / "staging"

    @property
    def pid_dir(self) -> Path:
        return self.resolve_target_dir() / "pid"
