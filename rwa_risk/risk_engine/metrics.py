"""In-process counters and latency histograms for the risk loop."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, MutableMapping, Tuple

LabelKey = Tuple[Tuple[str, str], ...]
MetricKey = Tuple[str, LabelKey]


@dataclass
class MetricRegistry:
    """A minimal Prometheus-style collector."""

    counters: MutableMapping[MetricKey, float] = field(default_factory=lambda: defaultdict(float))
    histograms: MutableMapping[MetricKey, List[float]] = field(default_factory=lambda: defaultdict(list))

    def inc(self, name: str, *, labels: Mapping[str, str] | None = None, amount: float = 1.0) -> None:
        self.counters[self._key(name, labels)] += amount

    def observe(self, name: str, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        self.histograms[self._key(name, labels)].append(value)

    def counter(self, name: str, *, labels: Mapping[str, str] | None = None) -> float:
        return self.counters.get(self._key(name, labels), 0.0)

    def samples(self, name: str, *, labels: Mapping[str, str] | None = None) -> List[float]:
        return list(self.histograms.get(self._key(name, labels), []))

    def as_dict(self) -> Dict[str, Dict[str, float]]:
        """Flatten counters into ``{name: {"k=v,...": value}}`` for JSON output."""

        flattened: Dict[str, Dict[str, float]] = defaultdict(dict)
        for (name, labels), value in self.counters.items():
            flattened[name][",".join(f"{k}={v}" for k, v in labels)] = value
        return dict(flattened)

    def _key(self, name: str, labels: Mapping[str, str] | None) -> MetricKey:
        return name, tuple(sorted((labels or {}).items()))


class Timer:
    """Context manager recording elapsed seconds into a histogram."""

    def __init__(self, registry: MetricRegistry, name: str, *, labels: Mapping[str, str] | None = None) -> None:
        self._registry = registry
        self._name = name
        self._labels = labels
        self._start: float | None = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._start is None:
            return
        self._registry.observe(self._name, time.perf_counter() - self._start, labels=self._labels)
