"""Application configuration loaded from environment and config files."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class OverlapConfig(BaseSettings):
    """Overlap thresholds and scanner tuning.

    All thresholds are percentages of the smaller parcel's area.
    """

    model_config = {"env_prefix": "GEOESTATE_OVERLAP_"}

    warning_threshold: float = 10.0
    block_threshold: float = 20.0
    critical_threshold: float = 50.0
    min_reportable_threshold: float = 10.0
    creation_report_threshold: float = 1.0
    max_reported_overlaps: int = 5

    source_crs: str | None = "EPSG:4326"
    area_crs: str = "EPSG:6933"

    use_spatial_index: bool = True
    scan_workers: int = 1


class ValidationConfig(BaseSettings):
    """Submission-time polygon validation limits."""

    model_config = {"env_prefix": "GEOESTATE_VALIDATION_"}

    min_area_m2: float = 10.0
    large_area_warning_m2: float = 100_000_000.0
    max_vertices_warning: int = 1000
    max_aspect_ratio: float = 20.0
    # Service region (lng/lat); defaults to the Tanzania mainland envelope.
    region_bounds: tuple[float, float, float, float] = (29.34, -11.76, 40.44, -0.99)


class FraudConfig(BaseSettings):
    """Scores of the polygon fraud signals.

    ``similarity_tiers`` pairs a minimum overlap percentage (of the checked
    parcel's own area, exclusive) with a score. The first matching tier wins,
    so tiers are kept in descending order.
    """

    model_config = {"env_prefix": "GEOESTATE_FRAUD_"}

    duplicate_score: int = 20
    self_intersection_score: int = 15
    similarity_tiers: list[tuple[float, int]] = Field(
        default_factory=lambda: [(80.0, 18), (20.0, 12), (5.0, 5)]
    )

    @field_validator("similarity_tiers")
    @classmethod
    def _descending(cls, tiers: list[tuple[float, int]]) -> list[tuple[float, int]]:
        return sorted(tiers, key=lambda tier: tier[0], reverse=True)


class AuditConfig(BaseSettings):
    """Audit logging configuration."""

    model_config = {"env_prefix": "GEOESTATE_AUDIT_"}

    log_dir: str = "data/audit"
    hash_algorithm: str = "sha256"


class DatabaseConfig(BaseSettings):
    """Parcel and audit store configuration."""

    model_config = {"env_prefix": "GEOESTATE_DB_"}

    database_url: str | None = None
    echo: bool = False
    pool_size: int = 5


class NotificationConfig(BaseSettings):
    """Notification engine configuration."""

    model_config = {"env_prefix": "GEOESTATE_NOTIFICATION_"}

    # Defaults to config/notification_templates.yml at the repository root.
    templates_path: str | None = None
    admin_ids: list[str] = Field(default_factory=list)


class AuthConfig(BaseSettings):
    """Roles allowed to run scans and act on overlaps."""

    model_config = {"env_prefix": "GEOESTATE_AUTH_"}

    reviewer_roles: list[str] = Field(
        default_factory=lambda: ["admin", "verification_officer", "spatial_analyst"]
    )


class Settings(BaseSettings):
    """Root application settings."""

    model_config = {"env_prefix": "GEOESTATE_"}

    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    overlap: OverlapConfig = Field(default_factory=OverlapConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    fraud: FraudConfig = Field(default_factory=FraudConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
