"""
DNS benchmark result model.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, computed_field


def _answered(samples: List[float]) -> List[float]:
    return [s for s in samples if s >= 0]


class DnsBenchmarkResult(BaseModel):
    """
    Latency samples collected against one resolver.

    Samples are appended during a benchmark run and never removed. A value of
    -1 marks a failed or timed-out query; statistics only consider answered
    queries.
    """
    name: str = Field(description="Display name of the resolver")
    address: str = Field(description="Resolver IPv4 address")
    cached_samples: List[float] = Field(
        default_factory=list,
        description="OS-level lookup latencies in ms"
    )
    uncached_samples: List[float] = Field(
        default_factory=list,
        description="Raw UDP query latencies in ms"
    )

    def add_cached(self, latency_ms: float) -> None:
        self.cached_samples.append(latency_ms if latency_ms >= 0 else -1.0)

    def add_uncached(self, latency_ms: float) -> None:
        self.uncached_samples.append(latency_ms if latency_ms >= 0 else -1.0)

    @computed_field  # type: ignore[misc]
    @property
    def cached_min(self) -> Optional[float]:
        answered = _answered(self.cached_samples)
        return min(answered) if answered else None

    @computed_field  # type: ignore[misc]
    @property
    def cached_max(self) -> Optional[float]:
        answered = _answered(self.cached_samples)
        return max(answered) if answered else None

    @computed_field  # type: ignore[misc]
    @property
    def cached_avg(self) -> Optional[float]:
        answered = _answered(self.cached_samples)
        return sum(answered) / len(answered) if answered else None

    @computed_field  # type: ignore[misc]
    @property
    def uncached_min(self) -> Optional[float]:
        answered = _answered(self.uncached_samples)
        return min(answered) if answered else None

    @computed_field  # type: ignore[misc]
    @property
    def uncached_max(self) -> Optional[float]:
        answered = _answered(self.uncached_samples)
        return max(answered) if answered else None

    @computed_field  # type: ignore[misc]
    @property
    def uncached_avg(self) -> Optional[float]:
        answered = _answered(self.uncached_samples)
        return sum(answered) / len(answered) if answered else None

    @property
    def uncached_failures(self) -> int:
        return sum(1 for s in self.uncached_samples if s < 0)

    @property
    def iterations(self) -> int:
        return max(len(self.cached_samples), len(self.uncached_samples))
