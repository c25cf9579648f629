"""Pydantic configuration models for all system settings."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

DEFAULT_PREFERENCES = (
    "Prioritize extending battery life and reducing cost. "
    "Only turn on essential appliances if battery is below 40%."
)


class RelayConfig(BaseModel):
    id: int = Field(ge=1)
    name: str
    aliases: list[str] = Field(default_factory=list)  # extra words matched by the ranking step


def _default_relays() -> list[RelayConfig]:
    return [RelayConfig(id=i, name=f"Switch {i}") for i in range(1, 6)]


class BandConfig(BaseModel):
    """Battery band: inclusive range and the maximum relays allowed ON (None = all)."""

    label: str
    min_level: float = Field(ge=0.0, le=100.0)
    max_level: float = Field(ge=0.0, le=100.0)
    max_on: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def _check_range(self) -> BandConfig:
        if self.min_level > self.max_level:
            raise ValueError(f"band '{self.label}': min_level > max_level")
        return self


def _default_bands() -> list[BandConfig]:
    return [
        BandConfig(label="very_low", min_level=10.0, max_level=30.0, max_on=1),
        BandConfig(label="low", min_level=40.0, max_level=50.0, max_on=2),
        BandConfig(label="healthy", min_level=60.0, max_level=70.0, max_on=3),
        BandConfig(label="optimal", min_level=70.0, max_level=100.0, max_on=None),
    ]


class PolicyConfig(BaseModel):
    critical_below_pct: float = Field(10.0, ge=0.0, le=100.0)  # all relays OFF below this
    bands: list[BandConfig] = Field(default_factory=_default_bands)
    # Preference words that lift a gap level to the next band's cap
    gap_raise_keywords: list[str] = Field(
        default_factory=lambda: ["comfort", "convenience", "performance", "maximize usage", "keep everything on"]
    )
    # Preference words that hold a gap level at the lower band's cap
    gap_hold_keywords: list[str] = Field(
        default_factory=lambda: ["battery life", "conserve", "save", "reduce cost", "reducing cost", "extend"]
    )
    preferences: str = DEFAULT_PREFERENCES

    @model_validator(mode="after")
    def _sort_bands(self) -> PolicyConfig:
        self.bands = sorted(self.bands, key=lambda b: (b.min_level, b.max_level))
        return self


class AutomationConfig(BaseModel):
    threshold_pct: float = Field(40.0, ge=0.0, le=100.0)
    forecast_refresh_interval_seconds: int = 3600
    forecast_retry_interval_seconds: int = 60
    command_history_size: int = 200


class ForecastConfig(BaseModel):
    url: str = ""  # empty = use the static values below
    api_key: str = ""
    timeout_seconds: float = 15.0
    static_predicted_usage: float = 0.0
    static_usage_pattern: str = ""


class FirebaseConfig(BaseModel):
    database_url: str = "https://example-default-rtdb.firebaseio.com"
    auth_secret: str = ""
    relay_path: str = "app/switchStates"
    telemetry_path: str = "app/energyData"


class MQTTConfig(BaseModel):
    broker_host: str = "localhost"
    broker_port: int = 1883
    username: str = ""
    password: str = ""
    topic_prefix: str = "solaris"


class StoreConfig(BaseModel):
    backend: str = "firebase"  # "firebase" or "mqtt"
    write_timeout_seconds: float = Field(5.0, gt=0.0)
    reconnect_delay_seconds: float = 5.0
    firebase: FirebaseConfig = FirebaseConfig()
    mqtt: MQTTConfig = MQTTConfig()


class DeviceConfig(BaseModel):
    enabled: bool = False
    active_low: bool = True  # NC relay boards energize on LOW


class APIConfig(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file: str = ""


class AppConfig(BaseModel):
    """Root configuration model containing all system settings."""

    relays: list[RelayConfig] = Field(default_factory=_default_relays)
    automation: AutomationConfig = AutomationConfig()
    policy: PolicyConfig = PolicyConfig()
    forecast: ForecastConfig = ForecastConfig()
    store: StoreConfig = StoreConfig()
    device: DeviceConfig = DeviceConfig()
    api: APIConfig = APIConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode="after")
    def _check_relays(self) -> AppConfig:
        ids = [r.id for r in self.relays]
        if not ids:
            raise ValueError("at least one relay must be configured")
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate relay ids: {sorted(ids)}")
        if sorted(ids) != list(range(1, len(ids) + 1)):
            raise ValueError(f"relay ids must be 1..{len(ids)}, got {sorted(ids)}")
        self.relays = sorted(self.relays, key=lambda r: r.id)
        return self

    @property
    def relay_ids(self) -> list[int]:
        return [r.id for r in self.relays]

    def relay_name(self, relay_id: int) -> str:
        for relay in self.relays:
            if relay.id == relay_id:
                return relay.name
        return f"Switch {relay_id}"
