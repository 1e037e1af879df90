"""Prometheus counters, histograms and gauges owned by one monitor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .buffers import RingBuffer

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

HISTOGRAM_SAMPLE_CAPACITY = 1000

type LabelKey = str


def label_key(labels: Mapping[str, str]) -> LabelKey:
    """Readable key for a label set, e.g. ``operation=license_sync,status=success``."""

    return ",".join(f"{name}={value}" for name, value in sorted(labels.items()))


def _label_values(labelnames: tuple[str, ...], labels: Mapping[str, object]) -> dict[str, str]:
    unknown = set(labels) - set(labelnames)
    if unknown:
        raise ValueError(f"Unknown labels {sorted(unknown)}; expected {list(labelnames)}")
    return {name: str(labels.get(name, "")) for name in labelnames}


class CounterMetric:
    """Labelled counter; unset labels are recorded as empty strings."""

    __slots__ = ("_counter", "_registry", "labelnames", "name")

    def __init__(
        self,
        name: str,
        description: str,
        labelnames: Iterable[str],
        registry: CollectorRegistry,
    ) -> None:
        self.name = name
        self.labelnames = tuple(labelnames)
        self._registry = registry
        self._counter = Counter(
            name, description or name, labelnames=self.labelnames, registry=registry
        )

    @property
    def _sample_name(self) -> str:
        return self.name if self.name.endswith("_total") else f"{self.name}_total"

    def inc(self, amount: float = 1.0, **labels: object) -> None:
        values = _label_values(self.labelnames, labels)
        if values:
            self._counter.labels(**values).inc(amount)
        else:
            self._counter.inc(amount)

    def value(self, **labels: object) -> float:
        sample = self._registry.get_sample_value(
            self._sample_name, _label_values(self.labelnames, labels)
        )
        return sample or 0.0

    def by_label(self) -> dict[LabelKey, float]:
        return {
            label_key(sample.labels): sample.value
            for family in self._counter.collect()
            for sample in family.samples
            if sample.name == self._sample_name
        }

    def total(self) -> float:
        return sum(self.by_label().values())


class GaugeMetric:
    __slots__ = ("_gauge", "_registry", "name")

    def __init__(self, name: str, description: str, registry: CollectorRegistry) -> None:
        self.name = name
        self._registry = registry
        self._gauge = Gauge(name, description or name, registry=registry)

    @property
    def value(self) -> float:
        return self._registry.get_sample_value(self.name) or 0.0

    def set(self, value: float) -> None:
        self._gauge.set(value)

    def inc(self, amount: float = 1.0) -> None:
        self._gauge.inc(amount)

    def dec(self, amount: float = 1.0) -> None:
        self._gauge.dec(amount)


@dataclass(slots=True, frozen=True)
class HistogramSummary:
    count: int
    total: float
    average: float
    minimum: float | None
    maximum: float | None
    buckets: dict[float, int]


class HistogramMetric:
    """Prometheus histogram plus a window of the last ``HISTOGRAM_SAMPLE_CAPACITY`` samples.

    Count, sum and bucket counts come from the registry and cover every observation;
    average, minimum and maximum are computed over the window.
    """

    __slots__ = ("_histogram", "_registry", "_window", "name")

    def __init__(
        self,
        name: str,
        description: str,
        buckets: tuple[float, ...],
        registry: CollectorRegistry,
    ) -> None:
        self.name = name
        self._registry = registry
        self._histogram = Histogram(
            name,
            description or name,
            buckets=buckets or Histogram.DEFAULT_BUCKETS,
            registry=registry,
        )
        self._window: RingBuffer[float] = RingBuffer(HISTOGRAM_SAMPLE_CAPACITY)

    def observe(self, value: float) -> None:
        self._histogram.observe(value)
        self._window.append(value)

    @property
    def count(self) -> int:
        """Observations ever recorded, including samples evicted from the window."""
        return int(self._registry.get_sample_value(f"{self.name}_count") or 0)

    def samples(self) -> list[float]:
        return self._window.snapshot()

    def average(self) -> float:
        samples = self._window.snapshot()
        return sum(samples) / len(samples) if samples else 0.0

    def _bucket_counts(self) -> dict[float, int]:
        counts: dict[float, int] = {}
        for family in self._histogram.collect():
            for sample in family.samples:
                if sample.name != f"{self.name}_bucket" or sample.labels["le"] == "+Inf":
                    continue
                counts[float(sample.labels["le"])] = int(sample.value)
        return counts

    def summary(self) -> HistogramSummary:
        samples = self._window.snapshot()
        return HistogramSummary(
            count=self.count,
            total=self._registry.get_sample_value(f"{self.name}_sum") or 0.0,
            average=self.average(),
            minimum=min(samples) if samples else None,
            maximum=max(samples) if samples else None,
            buckets=self._bucket_counts(),
        )


type Metric = CounterMetric | HistogramMetric | GaugeMetric


class MetricsRegistry:
    """Wraps a private ``CollectorRegistry``; metrics are created on first use."""

    def __init__(self) -> None:
        self.registry = CollectorRegistry()
        self._metrics: dict[str, Metric] = {}

    def _existing[TMetric: Metric](self, metric_cls: type[TMetric], name: str) -> TMetric | None:
        existing = self._metrics.get(name)
        if existing is None:
            return None
        if not isinstance(existing, metric_cls):
            raise TypeError(f"Metric {name!r} already registered as {type(existing).__name__}")
        return existing

    def counter(
        self, name: str, description: str = "", labelnames: Iterable[str] = ()
    ) -> CounterMetric:
        existing = self._existing(CounterMetric, name)
        if existing is not None:
            return existing
        metric = CounterMetric(name, description, labelnames, self.registry)
        self._metrics[name] = metric
        return metric

    def histogram(
        self, name: str, description: str = "", buckets: tuple[float, ...] = ()
    ) -> HistogramMetric:
        existing = self._existing(HistogramMetric, name)
        if existing is not None:
            return existing
        metric = HistogramMetric(name, description, buckets, self.registry)
        self._metrics[name] = metric
        return metric

    def gauge(self, name: str, description: str = "") -> GaugeMetric:
        existing = self._existing(GaugeMetric, name)
        if existing is not None:
            return existing
        metric = GaugeMetric(name, description, self.registry)
        self._metrics[name] = metric
        return metric

    def snapshot(self) -> dict[str, object]:
        result: dict[str, object] = {}
        for name, metric in sorted(self._metrics.items()):
            match metric:
                case CounterMetric():
                    result[name] = {"total": metric.total(), "by_label": metric.by_label()}
                case HistogramMetric():
                    result[name] = metric.summary()
                case GaugeMetric():
                    result[name] = metric.value
        return result

    def exposition(self) -> str:
        """Prometheus text format of every metric in this registry."""
        return generate_latest(self.registry).decode("utf-8")

    def clear(self) -> None:
        self.registry = CollectorRegistry()
        self._metrics.clear()
