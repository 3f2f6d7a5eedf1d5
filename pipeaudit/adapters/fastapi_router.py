"""FastAPI router exposing reconciliation reports and audit queries."""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query

from ..errors import AuditValidationError
from ..models import DiscrepancyFilters, Severity
from ..reconciliation import REPORT_VIEWS, discrepancy_to_dict
from ..service import AuditService


def build_router(service: AuditService) -> APIRouter:
    """Create routes bound to ``service``. Mount with ``app.include_router``."""
    router = APIRouter()

    @router.get("/runs/{correlation_id}/report")
    def get_report(correlation_id: UUID, view: str = Query(default="standard")) -> Dict:
        if view not in REPORT_VIEWS:
            raise HTTPException(
                status_code=422,
                detail=f"Unknown report view '{view}'; expected one of {sorted(REPORT_VIEWS)}",
            )
        return service.generate_report_view(correlation_id, view)

    @router.get("/runs/{correlation_id}/trail")
    def get_trail(correlation_id: UUID) -> List[Dict]:
        return [
            {
                "audit_id": str(event.audit_id) if event.audit_id else None,
                "source_system": event.source_system,
                "module_name": event.module_name,
                "process_name": event.process_name,
                "checkpoint_stage": event.checkpoint_stage.value,
                "status": event.status.value,
                "event_timestamp": event.event_timestamp.isoformat(),
                "message": event.message,
            }
            for event in service.get_audit_trail(correlation_id)
        ]

    @router.get("/discrepancies")
    def get_discrepancies(
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        source_system: Optional[str] = None,
        module_name: Optional[str] = None,
        severity: Optional[Severity] = None,
    ) -> List[Dict]:
        filters = DiscrepancyFilters(
            start=start_date,
            end=end_date,
            source_system=source_system,
            module_name=module_name,
            severity=severity,
        )
        try:
            discrepancies = service.detect_discrepancies(filters)
        except AuditValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.message) from exc
        return [discrepancy_to_dict(item) for item in discrepancies]

    @router.get("/statistics")
    def get_statistics(
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        try:
            return service.get_audit_statistics(start_date, end_date)
        except AuditValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.message) from exc

    return router
