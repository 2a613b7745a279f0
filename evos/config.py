"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class EvosSettings(BaseSettings):
    log_level: str = "INFO"
    seed: int = 0  # seeds the runtime's random source

    # Knowledge
    embedding_dim: int = 8

    # Echo mesh
    health_hop_bound: int = 3  # pairs farther apart than this count against health
    max_sync_rounds: int = 32

    # Sigma gate
    approval_threshold: float = 0.9  # phase-sovereign threshold
    rejection_threshold: float = 0.6
    max_consecutive_rejections: int = 3  # agent flips to error after this many
    initial_autonomy: float = 0.8
    autonomy_smoothing: float = 0.2
    audit_db_path: Path | None = None  # None = in-memory audit log only

    # Evolution
    root_fitness: float = 0.7
    root_mutation_rate: float = 0.05

    # Metrics
    approval_window: int = 50
    fitness_trend_window: int = 10

    # Events
    event_history_limit: int = 500

    model_config = {"env_prefix": "EVOS_"}


settings = EvosSettings()
