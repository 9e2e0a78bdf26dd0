from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from uuid import uuid4

from app.core.exceptions import PipelineError
from app.models.analysis_models import Comment
from app.models.analysis_models import Project
from app.models.analysis_models import SummaryDocuments
from app.models.analysis_models import SummaryKind
from app.services.llm import CompletionClient
from app.services.llm import execute_completion_step
from app.services.project_report_service import ProjectReportService

logger = logging.getLogger(__name__)

SUMMARY_TEMPLATES = {
    SummaryKind.CONCISE: "llms_txt.jinja2",
    SummaryKind.EXTENDED: "llms_full_txt.jinja2",
}


def distinct_source_types(comments: list[Comment]) -> list[str]:
    """Non-empty comment source types in first-seen order."""
    return list(dict.fromkeys(c.source_type for c in comments if c.source_type))


class SummaryExportService:
    """Builds the llms.txt / llms-full.txt summaries. Nothing here is persisted."""

    def __init__(
        self,
        client: CompletionClient,
        project_report_service: ProjectReportService,
        concise_model_id: str,
        extended_model_id: str,
        max_prompt_chars: int | None = None,
    ):
        self.client = client
        self.project_report_service = project_report_service
        self.models = {
            SummaryKind.CONCISE: concise_model_id,
            SummaryKind.EXTENDED: extended_model_id,
        }
        self.max_prompt_chars = max_prompt_chars

    async def generate_summary_documents(
        self,
        project: Project,
        comments: list[Comment],
        force_regenerate: bool = False,
        kinds: Iterable[SummaryKind] | None = None,
        request_id: str | None = None,
    ) -> SummaryDocuments:
        """Generate the requested summary documents (both when *kinds* is None).

        The project report is requested first with ``force_regenerate`` forwarded;
        each requested document then costs exactly one completion call.
        """
        request_id = request_id or str(uuid4())
        requested = list(dict.fromkeys(kinds)) if kinds is not None else list(SummaryKind)
        logger.info(
            "[%s] Generating summary documents %s for %s (force=%s)",
            request_id,
            [k.value for k in requested],
            project.id,
            force_regenerate,
        )

        try:
            narrative = await self.project_report_service.get_or_create_project_report(
                project,
                comments,
                force_regenerate=force_regenerate,
                request_id=request_id,
            )
            context = {
                "project": {
                    "name": project.name,
                    "description": project.description or "",
                    "extraction_topic": project.extraction_topic or "",
                    "context": project.context or "",
                },
                "question_count": len(project.questions),
                "comment_count": len(comments),
                "source_types": distinct_source_types(comments),
                "report": narrative.overall_analysis,
            }
            texts = await asyncio.gather(
                *(
                    execute_completion_step(
                        self.client,
                        request_id=request_id,
                        step_name=f"summary_{kind.value}",
                        template_name=SUMMARY_TEMPLATES[kind],
                        context=context,
                        model_id=self.models[kind],
                        max_prompt_chars=self.max_prompt_chars,
                    )
                    for kind in requested
                )
            )
        except PipelineError as e:
            logger.error("[%s] Summary export failed for %s: %s", request_id, project.id, str(e))
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error generating summaries for %s", request_id, project.id)
            raise PipelineError(f"Unexpected error generating summary documents for {project.id}") from e

        documents = dict(zip(requested, texts))
        return SummaryDocuments(
            project_name=project.name,
            llms_txt=documents.get(SummaryKind.CONCISE),
            llms_full_txt=documents.get(SummaryKind.EXTENDED),
        )
