"""Configuration management for pacta-backup."""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class StoreConfig:
    """Live stores the engine snapshots and restores."""
    database_path: str = "./data/pacta.db"  # SQLite database file
    documents_dir: str = "./data/documents"  # uploaded contract files

    @classmethod
    def from_env(cls) -> 'StoreConfig':
        """Create config from environment variables."""
        return cls(
            database_path=os.getenv("PACTA_DATABASE_PATH", "./data/pacta.db"),
            documents_dir=os.getenv("PACTA_DOCUMENTS_DIR", "./data/documents")
        )

    def __post_init__(self):
        """Validate configuration."""
        if not self.database_path:
            raise ValueError("database_path must not be empty")
        if not self.documents_dir:
            raise ValueError("documents_dir must not be empty")


@dataclass(frozen=True)
class StorageConfig:
    """Artifact storage backend configuration."""
    backend: str = "local"  # local, s3
    local_dir: str = "./backups"

    # S3 specific settings
    s3_bucket: Optional[str] = None
    s3_prefix: str = "backups/"
    s3_region: str = "eu-west-1"
    s3_endpoint_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'StorageConfig':
        """Create config from environment variables."""
        return cls(
            backend=os.getenv("BACKUP_STORAGE_BACKEND", "local"),
            local_dir=os.getenv("BACKUP_DIR", "./backups"),
            s3_bucket=os.getenv("BACKUP_S3_BUCKET") or None,
            s3_prefix=os.getenv("BACKUP_S3_PREFIX", "backups/"),
            s3_region=os.getenv("AWS_REGION", "eu-west-1"),
            s3_endpoint_url=os.getenv("BACKUP_S3_ENDPOINT_URL") or None
        )

    def __post_init__(self):
        """Validate configuration."""
        valid_backends = {"local", "s3"}
        if self.backend not in valid_backends:
            raise ValueError(f"Unknown storage backend: {self.backend}. Available: {valid_backends}")
        if self.backend == "s3" and not self.s3_bucket:
            raise ValueError("s3_bucket is required for the s3 storage backend")


@dataclass(frozen=True)
class CatalogConfig:
    """Backup catalog persistence configuration."""
    backend: str = "json"  # json, redis
    path: str = "./data/backup_catalog.json"

    # Redis specific settings
    redis_url: str = "redis://localhost:6379"
    redis_password: Optional[str] = None
    redis_prefix: str = "pacta_backup:"

    @classmethod
    def from_env(cls) -> 'CatalogConfig':
        """Create config from environment variables."""
        return cls(
            backend=os.getenv("BACKUP_CATALOG_BACKEND", "json"),
            path=os.getenv("BACKUP_CATALOG_PATH", "./data/backup_catalog.json"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            redis_password=os.getenv("REDIS_PASSWORD", None),
            redis_prefix=os.getenv("BACKUP_REDIS_PREFIX", "pacta_backup:")
        )

    def __post_init__(self):
        """Validate configuration."""
        valid_backends = {"json", "redis"}
        if self.backend not in valid_backends:
            raise ValueError(f"Unknown catalog backend: {self.backend}. Available: {valid_backends}")


@dataclass(frozen=True)
class EncryptionConfig:
    """Key material for artifact encryption.

    The key is either 64 hex chars / base64 of 32 bytes, or a passphrase that
    gets stretched with PBKDF2.
    """
    key: Optional[str] = None
    kdf_salt: str = "pacta-backup"
    kdf_iterations: int = 200_000

    @classmethod
    def from_env(cls) -> 'EncryptionConfig':
        """Create config from environment variables."""
        return cls(
            key=os.getenv("BACKUP_ENCRYPTION_KEY") or None,
            kdf_salt=os.getenv("BACKUP_KDF_SALT", "pacta-backup"),
            kdf_iterations=int(os.getenv("BACKUP_KDF_ITERATIONS", "200000"))
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.kdf_iterations <= 0:
            raise ValueError(f"kdf_iterations must be positive, got {self.kdf_iterations}")

    @property
    def configured(self) -> bool:
        return bool(self.key)


@dataclass(frozen=True)
class RetentionPolicyConfig:
    """How retention sweeps and explicit deletes treat records."""
    scope: str = "global"  # global, per_type
    automatic_only: bool = False
    protect_recent_automatic_days: int = 3

    @classmethod
    def from_env(cls) -> 'RetentionPolicyConfig':
        """Create config from environment variables."""
        return cls(
            scope=os.getenv("BACKUP_RETENTION_SCOPE", "global"),
            automatic_only=os.getenv("BACKUP_RETENTION_AUTOMATIC_ONLY", "false").lower() == "true",
            protect_recent_automatic_days=int(os.getenv("BACKUP_PROTECT_AUTOMATIC_DAYS", "3"))
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.scope not in {"global", "per_type"}:
            raise ValueError(f"Unknown retention scope: {self.scope}")
        if self.protect_recent_automatic_days < 0:
            raise ValueError(
                f"protect_recent_automatic_days must be non-negative, got {self.protect_recent_automatic_days}"
            )


@dataclass(frozen=True)
class BackupEngineConfig:
    """Main backup engine configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    encryption: EncryptionConfig = field(default_factory=EncryptionConfig)
    retention: RetentionPolicyConfig = field(default_factory=RetentionPolicyConfig)

    # Defaults applied when a create request omits options
    default_compression_level: int = 6
    max_manual_backups_per_day: int = 5  # 0 disables the limit
    scheduler_enabled: bool = True

    @classmethod
    def from_env(cls) -> 'BackupEngineConfig':
        """Create complete config from environment variables."""
        return cls(
            store=StoreConfig.from_env(),
            storage=StorageConfig.from_env(),
            catalog=CatalogConfig.from_env(),
            encryption=EncryptionConfig.from_env(),
            retention=RetentionPolicyConfig.from_env(),
            default_compression_level=int(os.getenv("BACKUP_COMPRESSION_LEVEL", "6")),
            max_manual_backups_per_day=int(os.getenv("BACKUP_MAX_MANUAL_PER_DAY", "5")),
            scheduler_enabled=os.getenv("BACKUP_SCHEDULER_ENABLED", "true").lower() == "true"
        )

    def __post_init__(self):
        """Validate configuration."""
        if not 1 <= self.default_compression_level <= 9:
            raise ValueError(
                f"default_compression_level must be between 1 and 9, got {self.default_compression_level}"
            )
        if self.max_manual_backups_per_day < 0:
            raise ValueError(
                f"max_manual_backups_per_day must be non-negative, got {self.max_manual_backups_per_day}"
            )
