from app.schemas.common import CamelModel


class TimingMetricStats(CamelModel):
    count: int
    avg_s: float
    max_s: float


class DeliveryTotals(CamelModel):
    """Headline dispatch counters, also present in ``counters``."""

    sent: int = 0
    failed: int = 0
    webhooks_applied: int = 0
    provider_requests: int = 0
    provider_failures: int = 0


class MetricsResponse(CamelModel):
    delivery: DeliveryTotals
    counters: dict[str, int]
    timings: dict[str, TimingMetricStats]
