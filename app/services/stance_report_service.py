from __future__ import annotations

import logging
import numbers
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from app.core.exceptions import ParseFailure
from app.core.exceptions import PipelineError
from app.core.exceptions import StoreError
from app.models.analysis_models import ArtifactKey
from app.models.analysis_models import ArtifactKind
from app.models.analysis_models import Comment
from app.models.analysis_models import StanceAnalysis
from app.services.llm import CompletionClient
from app.services.llm import execute_completion_step
from app.services.llm import extract_json
from app.services.single_flight import SingleFlight
from app.services.storage.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)

STANCE_TEMPLATE = "stance_analysis.jinja2"


class StanceReportService:
    """Produces and caches the stance breakdown of one question."""

    def __init__(
        self,
        client: CompletionClient,
        store: ArtifactStore,
        model_id: str,
        single_flight: SingleFlight | None = None,
        max_prompt_chars: int | None = None,
    ):
        self.client = client
        self.store = store
        self.model_id = model_id
        self.single_flight = single_flight or SingleFlight()
        self.max_prompt_chars = max_prompt_chars

    async def get_analysis(self, project_id: str, question_id: str) -> StanceAnalysis | None:
        record = await self.store.get(ArtifactKey(ArtifactKind.STANCE, project_id, question_id))
        if record is None:
            return None
        try:
            return StanceAnalysis.model_validate(record)
        except ValidationError as e:
            raise StoreError(f"Stored stance analysis for question {question_id} is malformed") from e

    async def get_or_create_stance_analysis(
        self,
        project_id: str,
        question_id: str,
        question_text: str,
        stance_labels: list[str],
        comments: list[Comment],
        force_regenerate: bool = False,
        custom_prompt: str | None = None,
        request_id: str | None = None,
    ) -> StanceAnalysis:
        """Return the stored stance analysis, generating it on a miss or when forced.

        Raises:
            GenerationFailure: the completion was empty or the call failed.
            ParseFailure: the completion is not a valid stance breakdown.
        """
        request_id = request_id or str(uuid4())
        if not force_regenerate:
            existing = await self.get_analysis(project_id, question_id)
            if existing is not None:
                logger.debug("[%s] Using stored stance analysis for question %s", request_id, question_id)
                return existing

        logger.info(
            "[%s] Generating stance analysis for question %s (force=%s)",
            request_id,
            question_id,
            force_regenerate,
        )
        key = ArtifactKey(ArtifactKind.STANCE, project_id, question_id)
        return await self.single_flight.do(
            key,
            lambda: self._generate(
                key, question_text, stance_labels, comments, force_regenerate, custom_prompt, request_id
            ),
        )

    async def _generate(
        self,
        key: ArtifactKey,
        question_text: str,
        stance_labels: list[str],
        comments: list[Comment],
        force_regenerate: bool,
        custom_prompt: str | None,
        request_id: str,
    ) -> StanceAnalysis:
        try:
            if not force_regenerate:
                # another flight may have stored it after our first lookup
                existing = await self.get_analysis(key.project_id, key.question_id)
                if existing is not None:
                    logger.debug("[%s] Stance analysis for question %s was stored meanwhile", request_id, key.question_id)
                    return existing
            context = {
                "question": question_text,
                "stances": stance_labels,
                "comments": [{"source_type": c.source_type, "content": c.content} for c in comments],
                "custom_prompt": custom_prompt,
            }
            text = await execute_completion_step(
                self.client,
                request_id=request_id,
                step_name=f"stance_analysis ('{key.question_id}')",
                template_name=STANCE_TEMPLATE,
                context=context,
                model_id=self.model_id,
                max_prompt_chars=self.max_prompt_chars,
            )
            analysis = parse_stance_completion(text, key.project_id, key.question_id, question_text, stance_labels)
            await self.store.upsert(key, analysis.model_dump(mode="json"))
            logger.info(
                "[%s] Stored stance analysis for question %s with %d stances",
                request_id,
                key.question_id,
                len(analysis.stance_analysis),
            )
            return analysis
        except PipelineError as e:
            logger.error("[%s] Stance analysis failed for question %s: %s", request_id, key.question_id, str(e))
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error in stance analysis for question %s", request_id, key.question_id)
            raise PipelineError(f"Unexpected error analysing stances for question {key.question_id}") from e


def parse_stance_completion(
    text: str,
    project_id: str,
    question_id: str,
    question_text: str,
    stance_labels: list[str],
) -> StanceAnalysis:
    """Decode a sanitized completion into a StanceAnalysis.

    Every candidate label ends up in the distribution; a bare number is read as a count.
    """
    data = extract_json(text)
    if not isinstance(data, dict):
        raise ParseFailure(f"Expected a JSON object for stance analysis, got {type(data).__name__}")

    raw_distribution = data.get("stance_analysis", data.get("stanceAnalysis"))
    if not isinstance(raw_distribution, dict):
        raise ParseFailure("Stance analysis completion has no stance distribution object")

    distribution: dict[str, Any] = {}
    for label, value in raw_distribution.items():
        if isinstance(value, bool):
            raise ParseFailure(f"Stance '{label}' has a boolean instead of a count")
        distribution[str(label)] = {"count": value} if isinstance(value, numbers.Real) else value
    for label in stance_labels:
        distribution.setdefault(label, {"count": 0})

    try:
        return StanceAnalysis(
            project_id=project_id,
            question_id=question_id,
            question=question_text,
            stance_analysis=distribution,
            analysis=data.get("analysis", ""),
        )
    except ValidationError as e:
        raise ParseFailure(f"Invalid stance analysis structure: {e.error_count()} validation error(s)") from e
