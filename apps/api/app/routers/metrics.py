from fastapi import APIRouter, Depends

from app.auth.dependencies import AuthContext, require_backoffice
from app.observability import metrics_store
from app.schemas.metrics import DeliveryTotals, MetricsResponse, TimingMetricStats

router = APIRouter(prefix="/metrics", tags=["metrics"])


def _delivery_totals(counters: dict[str, int]) -> DeliveryTotals:
    return DeliveryTotals(
        sent=counters.get("delivery_send_total", 0),
        failed=counters.get("delivery_send_failed_total", 0),
        webhooks_applied=counters.get("delivery_webhook_total", 0),
        provider_requests=counters.get("provider_request_total", 0),
        provider_failures=counters.get("provider_request_failed_total", 0),
    )


@router.get("", summary="Dispatch and webhook metrics", response_model=MetricsResponse)
def metrics_endpoint(
    _auth: AuthContext = Depends(require_backoffice),
) -> MetricsResponse:
    """Counters and timings since process start; OPS/ADMIN only."""
    snapshot = metrics_store.snapshot()
    return MetricsResponse(
        delivery=_delivery_totals(snapshot.counters),
        counters=snapshot.counters,
        timings={
            name: TimingMetricStats(
                count=int(stats["count"]), avg_s=stats["avg_s"], max_s=stats["max_s"]
            )
            for name, stats in snapshot.timings.items()
        },
    )
