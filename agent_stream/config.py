from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, NonNegativeFloat, NonNegativeInt, PositiveFloat, PositiveInt


class ParserConfig(BaseModel):
    min_step_length: NonNegativeInt = 10
    max_buffer_length: PositiveInt = 10000
    repetition_window: PositiveInt = 100
    min_repetitions: int = Field(default=4, ge=2)
    low_diversity_threshold: PositiveInt = 8
    min_pattern_length: PositiveInt = 3
    pattern_repetitions: int = Field(default=5, ge=2)


class DispatcherConfig(BaseModel):
    timeout_seconds: PositiveFloat = 30.0
    max_retries: NonNegativeInt = 2
    retry_delay_seconds: NonNegativeFloat = 1.0
    success_rate_smoothing: float = Field(default=0.2, gt=0.0, le=1.0)
    reliability_threshold: float = Field(default=0.8, ge=0.0, le=1.0)


class MemoryConfig(BaseModel):
    max_short_term: PositiveInt = 20
    max_context_tokens: PositiveInt = 1024
    working_ttl_seconds: PositiveFloat = 3600.0
    working_recency_seconds: PositiveFloat = 1800.0
    min_access_count: NonNegativeInt = 2
    entity_recency_seconds: PositiveFloat = 3600.0
    max_entities: PositiveInt = 5
    max_working_entries: PositiveInt = 5
    cleanup_interval_seconds: PositiveFloat = 300.0


class AgentConfig(BaseModel):
    parser: ParserConfig = Field(default_factory=ParserConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    max_concurrent_turns: PositiveInt = 2
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None) -> "AgentConfig":
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml(cls, path: Path) -> "AgentConfig":
        import yaml

        content = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        return cls.from_mapping(content)
