"""Configuration models using Pydantic for validation."""
from typing import Dict, List, Optional, Union, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import os

from telemetry_reporter.definitions import MetricDefinition, MetricKind, metric
from telemetry_reporter.default_metrics import METRIC_GROUPS


class ReporterConfig(BaseModel):
    """Reporter behaviour."""
    prefix: str = "telemetry"
    flush_interval_ms: int = Field(default=10_000, ge=0)
    history_window_s: int = Field(default=3600, gt=0)

    @field_validator('prefix')
    @classmethod
    def validate_prefix(cls, v):
        if not v or v.startswith(".") or v.endswith("."):
            raise ValueError(f"Invalid metric prefix: {v!r}")
        return v


class PollerConfig(BaseModel):
    """Process statistics poller."""
    enabled: bool = True
    interval_s: float = Field(default=10.0, gt=0)


class SelfMetricsConfig(BaseModel):
    """Self-monitoring of the reporter."""
    prometheus: bool = True
    otel: bool = False
    prefix: str = ""
    otel_export_interval_s: float = Field(default=60.0, gt=0)


class MetricSpec(BaseModel):
    """Declarative metric definition for YAML configs.

    Only key-based measurements are expressible here; definitions with
    extractor or tag functions are passed to the Reporter in code.
    """
    kind: MetricKind
    name: str
    event_name: Optional[str] = None
    measurement: Optional[str] = None
    unit: Union[str, List[str]] = "unit"
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None

    @field_validator('unit')
    @classmethod
    def validate_unit(cls, v):
        if isinstance(v, list) and len(v) != 2:
            raise ValueError(f"Unit conversion must be [from, to], got {v}")
        return v

    def to_definition(self) -> MetricDefinition:
        opts = {
            "unit": tuple(self.unit) if isinstance(self.unit, list) else self.unit,
            "tags": self.tags,
            "description": self.description,
        }
        if self.event_name:
            opts["event_name"] = self.event_name
        if self.measurement:
            opts["measurement"] = self.measurement
        return metric(self.kind, self.name, **opts)


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    control_api_port: int = 8081


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    reporter: ReporterConfig = Field(default_factory=ReporterConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    self_metrics: SelfMetricsConfig = Field(default_factory=SelfMetricsConfig)
    default_metrics: List[str] = Field(default_factory=lambda: list(METRIC_GROUPS))
    metrics: List[MetricSpec] = Field(default_factory=list)

    @field_validator('default_metrics')
    @classmethod
    def validate_default_metrics(cls, v):
        """Only known default groups may be enabled."""
        unknown = [group for group in v if group not in METRIC_GROUPS]
        if unknown:
            raise ValueError(
                f"Unknown default metric groups {unknown}, available: {sorted(METRIC_GROUPS)}"
            )
        return v

    @model_validator(mode='after')
    def validate_metrics_unique(self):
        """A (kind, name) pair may only be declared once."""
        seen = set()
        for spec in self.metrics:
            key = (spec.kind, spec.name)
            if key in seen:
                raise ValueError(f"Metric '{spec.name}' of kind '{spec.kind}' is declared twice")
            seen.add(key)
        return self

    def build_definitions(self) -> List[MetricDefinition]:
        """Default groups followed by the declared metrics."""
        definitions = []
        for group in self.default_metrics:
            definitions.extend(METRIC_GROUPS[group]())
        definitions.extend(spec.to_definition() for spec in self.metrics)
        return definitions


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    return parse_config(raw_config)


def parse_config(raw_config: Dict) -> Config:
    """Apply environment overrides and validate a raw config mapping."""
    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    if env_prefix := os.getenv('TELEMETRY_PREFIX'):
        raw_config.setdefault('reporter', {})['prefix'] = env_prefix

    if env_flush := os.getenv('FLUSH_INTERVAL_MS'):
        raw_config.setdefault('reporter', {})['flush_interval_ms'] = env_flush

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
