"""Monitoring engine error classes."""

from typing import Any, Dict, List, Optional

from pipelens.exceptions import NotFoundError, PipelensException, ValidationError


class MonitoringError(PipelensException):
    """Base exception for monitoring operations."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class InvalidRunError(MonitoringError, ValidationError):
    """Raised when an ingested run fails validation."""

    def __init__(
        self,
        message: str,
        run_id: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message, {"run_id": run_id, "errors": errors or []})
        self.run_id = run_id
        self.errors = errors or []


class RunFinalizedError(InvalidRunError):
    """Raised when a completed run is ingested a second time."""

    def __init__(self, run_id: str, pipeline_id: str):
        super().__init__(
            f"Run {run_id} of pipeline {pipeline_id} is already finalized",
            run_id=run_id,
        )
        self.pipeline_id = pipeline_id
        self.details["pipeline_id"] = pipeline_id


class AlertNotFoundError(MonitoringError, NotFoundError):
    """Raised when an alert id is unknown."""

    def __init__(self, alert_id: str):
        super().__init__(f"Alert {alert_id} not found", {"alert_id": alert_id})
        self.alert_id = alert_id


class InvalidPipelineStructureError(MonitoringError, ValidationError):
    """Raised when a pipeline definition is not a valid DAG."""

    def __init__(self, message: str, cycle_path: Optional[List[str]] = None):
        super().__init__(message, {"cycle_path": cycle_path or []})
        self.cycle_path = cycle_path or []
