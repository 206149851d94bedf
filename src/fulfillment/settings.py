from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeofenceSettings(BaseSettings):
    radius_m: float = Field(
        default=50.0,
        ge=10.0,
        le=500.0,
        description="Distance in meters at which the driver is inside a pickup/dropoff zone",
    )
    auto_validate_dropoff: bool = Field(
        default=True,
        description="Complete the order automatically after dwelling in the dropoff zone",
    )
    auto_validate_delay_s: float = Field(
        default=10.0,
        ge=0.0,
        le=300.0,
        description="Seconds of continuous presence in the dropoff zone before auto-validation",
    )

    model_config = SettingsConfigDict(env_prefix="GEOFENCE_")


class ThrottleSettings(BaseSettings):
    min_interval_ms: int = Field(default=3000, ge=0)
    min_distance_m: float = Field(default=15.0, ge=0.0)

    model_config = SettingsConfigDict(env_prefix="THROTTLE_")


class RouteSettings(BaseSettings):
    simplify_tolerance_deg: float = Field(default=0.00002, ge=0.0)

    # Route reveal animation
    animation_base_ms: float = Field(default=300.0, ge=0.0)
    animation_per_km_ms: float = Field(default=400.0, ge=0.0)
    animation_min_ms: float = Field(default=300.0, ge=0.0)
    animation_max_ms: float = Field(default=2000.0, ge=0.0)
    frame_interval_s: float = Field(default=1 / 60, gt=0.0, le=1.0)

    model_config = SettingsConfigDict(env_prefix="ROUTE_")

    @model_validator(mode="after")
    def validate_animation_band(self) -> "RouteSettings":
        if self.animation_min_ms > self.animation_max_ms:
            raise ValueError(
                f"animation_min_ms ({self.animation_min_ms}) must not exceed "
                f"animation_max_ms ({self.animation_max_ms})"
            )
        return self


class OSRMSettings(BaseSettings):
    base_url: str = "http://localhost:5000"
    timeout_s: float = Field(default=5.0, gt=0.0)

    model_config = SettingsConfigDict(env_prefix="OSRM_")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("OSRM base URL must start with http:// or https://")
        return v.rstrip("/")


class LifecycleSettings(BaseSettings):
    offer_window_s: float = Field(
        default=25.0,
        ge=25.0,
        le=30.0,
        description="Seconds a driver has to answer an offer before it is auto-declined",
    )
    auto_depart: bool = Field(
        default=True,
        description="Move accepted orders to enroute right after acceptance",
    )

    model_config = SettingsConfigDict(env_prefix="LIFECYCLE_")


class CommissionSettings(BaseSettings):
    minimum_recharge: int = Field(default=10_000, ge=0)
    default_rate: float = Field(default=10.0, ge=10.0, le=20.0)
    low_balance_threshold: int = Field(default=3000, ge=0)
    very_low_balance_threshold: int = Field(default=1000, ge=0)
    api_base_url: str = "http://localhost:4000/api"
    api_timeout_s: float = Field(default=10.0, gt=0.0)

    model_config = SettingsConfigDict(env_prefix="COMMISSION_")

    @model_validator(mode="after")
    def validate_thresholds(self) -> "CommissionSettings":
        if self.very_low_balance_threshold > self.low_balance_threshold:
            raise ValueError(
                "very_low_balance_threshold must not exceed low_balance_threshold"
            )
        return self


class SessionSettings(BaseSettings):
    location_interval_s: float = Field(default=10.0, gt=0.0)
    location_distance_m: float = Field(default=50.0, ge=0.0)
    heartbeat_interval_s: float = Field(default=120.0, gt=0.0)

    model_config = SettingsConfigDict(env_prefix="SESSION_")


class TransportSettings(BaseSettings):
    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_s: float = Field(default=0.5, ge=0.0, le=5.0)
    multiplier: float = Field(default=2.0, ge=1.0, le=5.0)

    model_config = SettingsConfigDict(env_prefix="TRANSPORT_")


class LoggingSettings(BaseSettings):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["text", "json"] = "text"
    environment: str = "development"

    model_config = SettingsConfigDict(env_prefix="LOG_")


class Settings(BaseSettings):
    geofence: GeofenceSettings = Field(default_factory=GeofenceSettings)
    throttle: ThrottleSettings = Field(default_factory=ThrottleSettings)
    route: RouteSettings = Field(default_factory=RouteSettings)
    osrm: OSRMSettings = Field(default_factory=OSRMSettings)
    lifecycle: LifecycleSettings = Field(default_factory=LifecycleSettings)
    commission: CommissionSettings = Field(default_factory=CommissionSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables."""
    return Settings()
