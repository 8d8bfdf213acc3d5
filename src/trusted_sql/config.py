"""
Pipeline Settings
=================

Runtime configuration read from ``TRUSTED_SQL_*`` environment variables.
"""

import os
from dataclasses import dataclass, fields
from typing import Any

from trusted_sql.errors import ConfigurationError

ENV_PREFIX = "TRUSTED_SQL_"

DEFAULT_TENANT_COLUMNS = ("tenantId", "venueId", "tenant_id", "venue_id")


@dataclass(frozen=True)
class PipelineSettings:
    """Tunable knobs for routing, consensus, validation and timeouts."""

    consensus_generations: int = 3
    candidate_timeout_s: float = 5.0
    consensus_deadline_s: float = 10.0
    single_deadline_s: float = 5.0
    trusted_deadline_s: float = 2.0

    # Consensus grouping: values agree when within either bound
    equivalence_epsilon: float = 0.01
    equivalence_abs_epsilon: float = 0.005
    medium_confidence_for_two_of_three: bool = False

    cross_check_tolerance: float = 0.01

    # Tenant-isolation validator
    tenant_columns: tuple[str, ...] = DEFAULT_TENANT_COLUMNS
    allowed_tables: tuple[str, ...] | None = None
    max_subquery_depth: int = 3
    strict_mode: bool = False
    # Generated SQL is parsed in the dialect the store executes
    sql_dialect: str = "sqlite"

    max_rows: int = 1000
    default_period: str = "thisMonth"
    timezone: str = "UTC"
    max_plausible_amount_factor: float = 10.0

    def __post_init__(self) -> None:
        if self.consensus_generations < 1:
            raise ConfigurationError("consensus_generations must be >= 1")
        for name in (
            "candidate_timeout_s",
            "consensus_deadline_s",
            "single_deadline_s",
            "trusted_deadline_s",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if not 0 <= self.cross_check_tolerance < 1:
            raise ConfigurationError("cross_check_tolerance must be in [0, 1)")
        if self.equivalence_epsilon < 0 or self.equivalence_abs_epsilon < 0:
            raise ConfigurationError("equivalence epsilons must be non-negative")
        if not self.tenant_columns:
            raise ConfigurationError("tenant_columns must not be empty")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "PipelineSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (default: ``os.environ``)

        Returns:
            PipelineSettings with defaults for every unset variable
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(f.name, f.default, raw)

        return cls(**values)


def _coerce(name: str, default: Any, raw: str) -> Any:
    """Convert a raw environment string to the type of the field default."""
    try:
        if isinstance(default, bool):
            if raw.lower() in ("1", "true", "yes", "on"):
                return True
            if raw.lower() in ("0", "false", "no", "off"):
                return False
            raise ValueError(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
        if isinstance(default, tuple) or default is None:
            items = tuple(item.strip() for item in raw.split(",") if item.strip())
            return items or None
        return raw
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}"
        ) from e
