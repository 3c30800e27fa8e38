"""
Exports router - sales reports as CSV, Excel, PDF or WhatsApp text.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from marketpulse.auth.dependencies import get_auth_session
from marketpulse.auth.session import AuthSession
from marketpulse.config import get_settings
from marketpulse.models.exports import ExportData, ExportOptions
from marketpulse.routers.params import ScopeParams
from marketpulse.services import exporters
from marketpulse.services.analytics_service import AnalyticsService
from marketpulse.storage import get_storage
from marketpulse.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


def export_options(
    delimiter: str = Query(",", description="CSV delimiter; use \\t for tab"),
    include_headers: bool = True,
    multiple_sheets: bool = True,
    include_emoji: bool = True,
    compact_format: bool = False,
    key_metrics_only: bool = False,
) -> ExportOptions:
    return ExportOptions(
        delimiter=delimiter,
        include_headers=include_headers,
        multiple_sheets=multiple_sheets,
        include_emoji=include_emoji,
        compact_format=compact_format,
        key_metrics_only=key_metrics_only,
    )


def _export_data(scope: ScopeParams) -> ExportData:
    settings = get_settings()
    return AnalyticsService(get_storage()).build_export_data(
        scope.timeframe,
        scope.platform_ids,
        scope.store_ids,
        max_transactions=settings.export_max_transactions,
    )


def _download(content: bytes, ext: str, data: ExportData) -> Response:
    filename = exporters.export_filename(ext, data.generated_at)
    return Response(
        content=content,
        media_type=exporters.MEDIA_TYPES[ext],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/csv")
async def export_csv(
    scope: ScopeParams = Depends(),
    options: ExportOptions = Depends(export_options),
    session: AuthSession = Depends(get_auth_session),
):
    data = _export_data(scope)
    logger.info("export_requested", format="csv", user_id=session.user_id)
    return _download(exporters.render_csv(data, options), "csv", data)


@router.get("/excel")
async def export_excel(
    scope: ScopeParams = Depends(),
    options: ExportOptions = Depends(export_options),
    session: AuthSession = Depends(get_auth_session),
):
    data = _export_data(scope)
    logger.info("export_requested", format="xlsx", user_id=session.user_id)
    return _download(exporters.render_excel(data, options), "xlsx", data)


@router.get("/pdf")
async def export_pdf(
    scope: ScopeParams = Depends(),
    session: AuthSession = Depends(get_auth_session),
):
    data = _export_data(scope)
    logger.info("export_requested", format="pdf", user_id=session.user_id)
    return _download(exporters.render_pdf(data, get_settings().currency_symbol), "pdf", data)


@router.get("/whatsapp")
async def export_whatsapp(
    scope: ScopeParams = Depends(),
    options: ExportOptions = Depends(export_options),
    session: AuthSession = Depends(get_auth_session),
):
    """Chat-ready summary text, returned as JSON for copy/share."""
    data = _export_data(scope)
    text = exporters.render_whatsapp(data, options, get_settings().currency_symbol)
    logger.info("export_requested", format="whatsapp", user_id=session.user_id)
    return {
        "success": True,
        "data": {"text": text, "filename": exporters.export_filename("txt", data.generated_at)},
    }
