"""Export endpoint for report datasets."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from rollup.api.params import get_filter_spec
from rollup.db.dependencies import get_record_source
from rollup.domain.filters import FilterSpecification
from rollup.repositories.record_source import SqlRecordSource
from rollup.services.reporting_service import RollupReportingService

router = APIRouter(prefix="/exports", tags=["exports"])


def _service(source: SqlRecordSource) -> RollupReportingService:
    return RollupReportingService(source)


@router.get("/{report_kind}")
async def export_report(
    report_kind: str,
    format: str = Query(default="csv"),
    period: str = Query(default="monthly"),
    spec: FilterSpecification = Depends(get_filter_spec),
    source: SqlRecordSource = Depends(get_record_source),
) -> Response:
    service = _service(source)
    exported = await service.export_report(
        report_kind=report_kind,
        format_name=format,
        spec=spec,
        period=period,
    )
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )
