"""Alert creation, storage and forwarding."""

import threading
from collections import deque
from typing import Deque, Iterable, List, Optional, Protocol

import structlog

from pipelens import metrics
from pipelens.config import Settings

from .exceptions import AlertNotFoundError
from .models import (
    Alert,
    AlertAction,
    AlertActionType,
    AlertSeverity,
    AlertType,
    Anomaly,
    Severity,
    utcnow,
)

logger = structlog.get_logger()

_ALERT_SEVERITY = {
    Severity.CRITICAL: AlertSeverity.CRITICAL,
    Severity.HIGH: AlertSeverity.ERROR,
}


class AlertSink(Protocol):
    """Receives every alert raised by the dispatcher."""

    async def send(self, alert: Alert) -> None:
        ...


def alert_for(anomaly: Anomaly) -> Optional[Alert]:
    """Build the alert for an anomaly, or None below high severity."""
    severity = _ALERT_SEVERITY.get(anomaly.severity)
    if severity is None:
        return None
    return Alert(
        pipeline_id=anomaly.pipeline_id,
        type=AlertType.ANOMALY,
        severity=severity,
        title=f"{anomaly.type.value.upper()} Anomaly Detected",
        description=anomaly.description,
        anomaly_id=anomaly.id,
        actions=[
            AlertAction(
                type=AlertActionType.INVESTIGATE,
                description="Investigate the anomaly and its root cause",
                automated=False,
                estimated_resolution_time="30 minutes",
            )
        ],
    )


class AlertDispatcher:
    """Append-only alert log shared across pipelines.

    Sink failures are logged and never undo the stored alert.
    """

    def __init__(self, settings: Settings, sink: Optional[AlertSink] = None):
        self.settings = settings
        self.sink = sink
        self._alerts: Deque[Alert] = deque(maxlen=settings.alert_retention)
        self._lock = threading.Lock()
        self.logger = logger.bind(component="alert_dispatcher")

    async def dispatch(self, anomalies: Iterable[Anomaly]) -> List[Alert]:
        alerts = [a for a in (alert_for(anomaly) for anomaly in anomalies) if a is not None]
        if not alerts:
            return []

        with self._lock:
            self._alerts.extend(alerts)

        for alert in alerts:
            self.logger.warning(
                "Alert raised",
                alert_id=alert.id,
                pipeline_id=alert.pipeline_id,
                severity=alert.severity.value,
                title=alert.title,
            )
            if self.settings.metrics_enabled:
                metrics.ALERTS_RAISED.labels(severity=alert.severity.value).inc()
            if self.sink is not None:
                try:
                    await self.sink.send(alert.model_copy(deep=True))
                except Exception as e:
                    self.logger.error(
                        "Failed to forward alert",
                        alert_id=alert.id,
                        error=str(e),
                    )
        return [a.model_copy(deep=True) for a in alerts]

    def list_alerts(
        self,
        pipeline_id: Optional[str] = None,
        resolved: Optional[bool] = None,
    ) -> List[Alert]:
        """List copies of stored alerts; only ``resolve`` changes the log."""
        with self._lock:
            alerts = [a.model_copy(deep=True) for a in self._alerts]
        if pipeline_id is not None:
            alerts = [a for a in alerts if a.pipeline_id == pipeline_id]
        if resolved is not None:
            alerts = [a for a in alerts if a.resolved == resolved]
        return alerts

    def resolve(self, alert_id: str) -> Alert:
        """Mark an alert resolved. Resolving twice keeps the first timestamp."""
        with self._lock:
            alert = next((a for a in self._alerts if a.id == alert_id), None)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            if not alert.resolved:
                alert.resolved = True
                alert.resolved_at = utcnow()
                self.logger.info("Alert resolved", alert_id=alert_id)
            return alert.model_copy(deep=True)
