from __future__ import annotations

import logging
from uuid import uuid4

from pydantic import ValidationError

from app.core.exceptions import PipelineError
from app.core.exceptions import StoreError
from app.models.analysis_models import ArtifactKey
from app.models.analysis_models import ArtifactKind
from app.models.analysis_models import Comment
from app.models.analysis_models import Project
from app.models.analysis_models import VisualReport
from app.services.llm import CompletionClient
from app.services.llm import execute_completion_step
from app.services.project_report_service import ProjectReportService
from app.services.single_flight import SingleFlight
from app.services.storage.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)

VISUAL_REPORT_TEMPLATE = "visual_report.jinja2"


class VisualReportService:
    """Renders the project narrative as a styled HTML+CSS document.

    Unlike the narrative stage, forcing a visual refresh is forwarded upstream,
    so the narrative it renders is refreshed too.
    """

    def __init__(
        self,
        client: CompletionClient,
        store: ArtifactStore,
        project_report_service: ProjectReportService,
        model_id: str,
        design: dict | None = None,
        single_flight: SingleFlight | None = None,
        max_prompt_chars: int | None = None,
    ):
        self.client = client
        self.store = store
        self.project_report_service = project_report_service
        self.model_id = model_id
        self.design = design or {}
        self.single_flight = single_flight or SingleFlight()
        self.max_prompt_chars = max_prompt_chars

    async def get_report(self, project_id: str) -> VisualReport | None:
        record = await self.store.get(ArtifactKey(ArtifactKind.VISUAL_REPORT, project_id))
        if record is None:
            return None
        try:
            return VisualReport.model_validate(record)
        except ValidationError as e:
            raise StoreError(f"Stored visual report for {project_id} is malformed") from e

    async def get_or_create_visual_report(
        self,
        project: Project,
        comments: list[Comment],
        force_regenerate: bool = False,
        custom_prompt: str | None = None,
        request_id: str | None = None,
    ) -> VisualReport:
        request_id = request_id or str(uuid4())
        if not force_regenerate:
            existing = await self.get_report(project.id)
            if existing is not None:
                logger.debug("[%s] Using stored visual report for %s", request_id, project.id)
                return existing

        logger.info("[%s] Generating visual report for %s (force=%s)", request_id, project.id, force_regenerate)
        key = ArtifactKey(ArtifactKind.VISUAL_REPORT, project.id)
        return await self.single_flight.do(
            key,
            lambda: self._generate(key, project, comments, force_regenerate, custom_prompt, request_id),
        )

    async def _generate(
        self,
        key: ArtifactKey,
        project: Project,
        comments: list[Comment],
        force_regenerate: bool,
        custom_prompt: str | None,
        request_id: str,
    ) -> VisualReport:
        try:
            if not force_regenerate:
                existing = await self.get_report(project.id)
                if existing is not None:
                    logger.debug("[%s] Visual report for %s was stored meanwhile", request_id, project.id)
                    return existing
            narrative = await self.project_report_service.get_or_create_project_report(
                project,
                comments,
                force_regenerate=force_regenerate,
                custom_prompt=custom_prompt,
                request_id=request_id,
            )
            html = await execute_completion_step(
                self.client,
                request_id=request_id,
                step_name="visual_report",
                template_name=VISUAL_REPORT_TEMPLATE,
                context={"report": narrative.overall_analysis, "design": self.design},
                model_id=self.model_id,
                max_prompt_chars=self.max_prompt_chars,
            )
            report = VisualReport(project_id=project.id, project_name=project.name, overall_analysis=html)
            await self.store.upsert(key, report.model_dump(mode="json"))
            logger.info("[%s] Stored visual report for %s (%d chars)", request_id, project.id, len(html))
            return report
        except PipelineError as e:
            logger.error("[%s] Visual report generation failed for %s: %s", request_id, project.id, str(e))
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error generating visual report for %s", request_id, project.id)
            raise PipelineError(f"Unexpected error generating visual report for {project.id}") from e
