from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

from pydantic import ValidationError

from app.core.exceptions import PartialAggregationFailure
from app.core.exceptions import PipelineError
from app.core.exceptions import StoreError
from app.models.analysis_models import ArtifactKey
from app.models.analysis_models import ArtifactKind
from app.models.analysis_models import Comment
from app.models.analysis_models import Project
from app.models.analysis_models import ProjectReport
from app.models.analysis_models import Question
from app.models.analysis_models import StanceAnalysis
from app.services.llm import CompletionClient
from app.services.llm import execute_completion_step
from app.services.single_flight import SingleFlight
from app.services.stance_report_service import StanceReportService
from app.services.storage.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)

PROJECT_REPORT_TEMPLATE = "project_report.jinja2"


class ProjectReportService:
    """Aggregates every question's stance analysis into one project narrative.

    Stance analyses are always requested without forcing regeneration: a forced
    narrative refresh reuses whatever stance artifacts already exist. Stance
    artifacts are only regenerated through the per-question endpoint.
    """

    def __init__(
        self,
        client: CompletionClient,
        store: ArtifactStore,
        stance_service: StanceReportService,
        model_id: str,
        single_flight: SingleFlight | None = None,
        fanout_concurrency: int = 4,
        max_prompt_chars: int | None = None,
    ):
        self.client = client
        self.store = store
        self.stance_service = stance_service
        self.model_id = model_id
        self.single_flight = single_flight or SingleFlight()
        self.fanout_concurrency = max(1, fanout_concurrency)
        self.max_prompt_chars = max_prompt_chars

    async def get_report(self, project_id: str) -> ProjectReport | None:
        record = await self.store.get(ArtifactKey(ArtifactKind.PROJECT_REPORT, project_id))
        if record is None:
            return None
        try:
            return ProjectReport.model_validate(record)
        except ValidationError as e:
            raise StoreError(f"Stored project report for {project_id} is malformed") from e

    async def get_or_create_project_report(
        self,
        project: Project,
        comments: list[Comment],
        force_regenerate: bool = False,
        custom_prompt: str | None = None,
        request_id: str | None = None,
    ) -> ProjectReport:
        request_id = request_id or str(uuid4())
        if not force_regenerate:
            existing = await self.get_report(project.id)
            if existing is not None:
                logger.debug("[%s] Using stored project report for %s", request_id, project.id)
                return existing

        logger.info("[%s] Generating project report for %s (force=%s)", request_id, project.id, force_regenerate)
        key = ArtifactKey(ArtifactKind.PROJECT_REPORT, project.id)
        return await self.single_flight.do(
            key, lambda: self._generate(key, project, comments, force_regenerate, custom_prompt, request_id)
        )

    async def _generate(
        self,
        key: ArtifactKey,
        project: Project,
        comments: list[Comment],
        force_regenerate: bool,
        custom_prompt: str | None,
        request_id: str,
    ) -> ProjectReport:
        try:
            if not force_regenerate:
                existing = await self.get_report(project.id)
                if existing is not None:
                    logger.debug("[%s] Project report for %s was stored meanwhile", request_id, project.id)
                    return existing
            analyses = await self._collect_stance_analyses(project, comments, custom_prompt, request_id)
            context = {
                "project": {"name": project.name, "description": project.description or ""},
                "question_analyses": [
                    {
                        "question": a.question,
                        "question_id": a.question_id,
                        "stance_analysis": {label: b.model_dump() for label, b in a.stance_analysis.items()},
                        "analysis": a.analysis,
                    }
                    for a in analyses
                ],
                "custom_prompt": custom_prompt,
            }
            overall_analysis = await execute_completion_step(
                self.client,
                request_id=request_id,
                step_name="project_report",
                template_name=PROJECT_REPORT_TEMPLATE,
                context=context,
                model_id=self.model_id,
                max_prompt_chars=self.max_prompt_chars,
            )
            report = ProjectReport(project_id=project.id, project_name=project.name, overall_analysis=overall_analysis)
            await self.store.upsert(key, report.model_dump(mode="json"))
            logger.info("[%s] Stored project report for %s (%d chars)", request_id, project.id, len(overall_analysis))
            return report
        except PipelineError as e:
            logger.error("[%s] Project report generation failed for %s: %s", request_id, project.id, str(e))
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error generating project report for %s", request_id, project.id)
            raise PipelineError(f"Unexpected error generating project report for {project.id}") from e

    async def _collect_stance_analyses(
        self,
        project: Project,
        comments: list[Comment],
        custom_prompt: str | None,
        request_id: str,
    ) -> list[StanceAnalysis]:
        """Fan out over all questions and join; any failed branch fails the whole report."""
        semaphore = asyncio.Semaphore(self.fanout_concurrency)

        async def _analyse(question: Question) -> StanceAnalysis:
            async with semaphore:
                return await self.stance_service.get_or_create_stance_analysis(
                    project.id,
                    question.id,
                    question.text,
                    question.stances,
                    comments,
                    force_regenerate=False,
                    custom_prompt=custom_prompt,
                    request_id=request_id,
                )

        results = await asyncio.gather(*(_analyse(q) for q in project.questions), return_exceptions=True)

        failures = [(q, r) for q, r in zip(project.questions, results) if isinstance(r, BaseException)]
        if failures:
            failed_ids = [q.id for q, _ in failures]
            logger.error(
                "[%s] %d of %d stance analyses failed for project %s: %s",
                request_id,
                len(failures),
                len(project.questions),
                project.id,
                failed_ids,
            )
            raise PartialAggregationFailure(
                f"Stance analysis failed for question(s) {', '.join(failed_ids)}: {failures[0][1]}",
                failed_question_ids=failed_ids,
            ) from failures[0][1]

        logger.debug("[%s] Collected %d stance analyses for project %s", request_id, len(results), project.id)
        return list(results)
