from __future__ import annotations

import logging

from app.core.config import Settings
from app.core.exceptions import NotFoundError
from app.models.analysis_models import Comment
from app.models.analysis_models import Project
from app.models.analysis_models import Question
from app.services.llm import CompletionClient
from app.services.project_report_service import ProjectReportService
from app.services.single_flight import SingleFlight
from app.services.stance_report_service import StanceReportService
from app.services.storage.artifact_store import ArtifactStore
from app.services.storage.artifact_store import InMemoryArtifactStore
from app.services.storage.artifact_store import SupabaseArtifactStore
from app.services.storage.project_repository import InMemoryProjectRepository
from app.services.storage.project_repository import ProjectRepository
from app.services.storage.project_repository import SupabaseProjectRepository
from app.services.summary_export_service import SummaryExportService
from app.services.visual_report_service import VisualReportService

# Configure module logger
logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """Holds the four stage services wired to one completion client and one artifact store.

    Built once at application startup; the stages keep no state besides their
    collaborators and the shared in-flight generation registry.
    """

    def __init__(
        self,
        client: CompletionClient,
        store: ArtifactStore,
        repository: ProjectRepository,
        config: Settings,
    ):
        logger.info("Initializing AnalysisPipeline with stage services")
        self.client = client
        self.store = store
        self.repository = repository
        self.single_flight = SingleFlight()

        self.stance = StanceReportService(
            client,
            store,
            model_id=config.stance_model,
            single_flight=self.single_flight,
            max_prompt_chars=config.max_total_prompt_chars,
        )
        self.project_report = ProjectReportService(
            client,
            store,
            self.stance,
            model_id=config.narrative_model,
            single_flight=self.single_flight,
            fanout_concurrency=config.stance_fanout_concurrency,
            max_prompt_chars=config.max_total_prompt_chars,
        )
        self.visual_report = VisualReportService(
            client,
            store,
            self.project_report,
            model_id=config.visual_model,
            design={
                "palette": config.visual_palette,
                "font_family": config.visual_font_family,
                "max_width_px": config.visual_max_width_px,
                "language": config.output_language,
            },
            single_flight=self.single_flight,
            max_prompt_chars=config.max_total_prompt_chars,
        )
        self.summary_export = SummaryExportService(
            client,
            self.project_report,
            concise_model_id=config.summary_model,
            extended_model_id=config.summary_extended_model,
            max_prompt_chars=config.max_total_prompt_chars,
        )

    async def load_project(self, project_id: str) -> tuple[Project, list[Comment]]:
        """Fetch a project and all of its comments, or raise NotFoundError."""
        project = await self.repository.get_project(project_id)
        if project is None:
            logger.warning("Project %s not found", project_id)
            raise NotFoundError(f"Project {project_id} not found")
        comments = await self.repository.list_comments(project_id)
        logger.debug("Loaded project %s with %d questions and %d comments", project_id, len(project.questions), len(comments))
        return project, comments

    @staticmethod
    def require_question(project: Project, question_id: str) -> Question:
        question = project.find_question(question_id)
        if question is None:
            raise NotFoundError(f"Question {question_id} not found in project {project.id}")
        return question


def build_pipeline(config: Settings) -> AnalysisPipeline:
    """Construct the pipeline and its storage backend from settings."""
    if config.storage_backend == "memory":
        logger.warning("Using in-memory storage: artifacts will not survive a restart")
        store: ArtifactStore = InMemoryArtifactStore()
        repository: ProjectRepository = InMemoryProjectRepository()
    else:
        store = SupabaseArtifactStore.from_credentials(config.supabase_url, config.supabase_key, config.artifact_table)
        repository = SupabaseProjectRepository.from_credentials(
            config.supabase_url, config.supabase_key, config.projects_table, config.comments_table
        )
    return AnalysisPipeline(CompletionClient.from_settings(config), store, repository, config)
