"""Builds the downloadable responses served by the analysis routes (CSV export, llms.txt)."""

import csv
import io
import logging

from fastapi.responses import Response

from app.core.exceptions import PipelineError
from app.models.analysis_models import Comment
from app.models.analysis_models import Project
from app.models.analysis_models import SummaryDocuments
from app.models.analysis_models import SummaryKind

__all__ = [
    "CSV_COLUMNS",
    "CSV_MEDIA_TYPE",
    "MARKDOWN_MEDIA_TYPE",
    "build_project_csv",
    "_csv_download_response",
    "_summary_download_response",
]

logger = logging.getLogger(__name__)

CSV_MEDIA_TYPE = "text/csv"
MARKDOWN_MEDIA_TYPE = "text/markdown"
CSV_COLUMNS = ["project_name", "comment_id", "source_type", "content"]


def build_project_csv(project: Project, comments: list[Comment]) -> str:
    """Serialize a project's raw comments, one row per comment."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for comment in comments:
        writer.writerow([project.name, comment.id, comment.source_type or "", comment.content])
    return buffer.getvalue()


def _csv_download_response(project: Project, comments: list[Comment], request_id: str) -> Response:
    content = build_project_csv(project, comments)
    logger.info("[%s] Exported %d comments of project %s as CSV", request_id, len(comments), project.id)
    return Response(
        content=content,
        media_type=CSV_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename=project-{project.id}-export.csv"},
    )


def _summary_download_response(documents: SummaryDocuments, kind: SummaryKind, request_id: str) -> Response:
    """Wrap one summary document as a markdown attachment."""
    content = documents.get(kind)
    if content is None:
        logger.error("[%s] Summary document %s was not generated", request_id, kind.value)
        raise PipelineError(f"Summary document '{kind.filename}' was not generated")
    return Response(
        content=content,
        media_type=MARKDOWN_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={kind.filename}"},
    )
