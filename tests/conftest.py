import json

import pytest

from app.core.config import Settings
from app.core.exceptions import GenerationFailure
from app.models.analysis_models import Comment
from app.models.analysis_models import Project
from app.models.analysis_models import Question
from app.services.pipeline import AnalysisPipeline
from app.services.storage.artifact_store import InMemoryArtifactStore
from app.services.storage.project_repository import InMemoryProjectRepository

STANCE_MODEL = "test/stance"
NARRATIVE_MODEL = "test/narrative"
VISUAL_MODEL = "test/visual"
SUMMARY_MODEL = "test/summary"
SUMMARY_EXTENDED_MODEL = "test/summary-extended"


def classify_prompt(prompt: str) -> str:
    """Tell which template produced *prompt*."""
    if "## Candidate stances" in prompt:
        return "stance"
    if "overall analysis report" in prompt:
        return "narrative"
    if "Graphic-recording" in prompt:
        return "visual"
    if "llms-full.txt generation" in prompt:
        return "extended"
    if "llms.txt generation" in prompt:
        return "concise"
    raise AssertionError(f"Unrecognised prompt: {prompt[:80]}")


def default_response(kind: str, prompt: str) -> str:
    if kind == "stance":
        return "```json\n" + json.dumps(
            {
                "stance_analysis": {"Yes": {"count": 2, "summary": "for"}, "No": {"count": 1, "summary": "against"}},
                "analysis": "Most comments agree.",
            }
        ) + "\n```"
    if kind == "narrative":
        return '"""\n# Overall report\nMost comments agree.\n"""'
    if kind == "visual":
        return "```html\n<html><body>report</body></html>\n```"
    if kind == "extended":
        return "```markdown\n# Project (detailed)\n```"
    return "```markdown\n# Project\n```"


class FakeCompletionClient:
    """Records every completion call and answers per prompt kind.

    ``responses`` maps a prompt kind to a string or a callable(prompt) -> str;
    ``failures`` is a set of substrings, a prompt containing one of them fails.
    """

    def __init__(self, responses: dict | None = None):
        self.calls: list[tuple[str, str, str]] = []
        self.responses = responses or {}
        self.failures: set[str] = set()

    async def complete(self, model_id: str, prompt: str, request_id: str | None = None) -> str:
        kind = classify_prompt(prompt)
        self.calls.append((kind, model_id, prompt))
        if any(marker in prompt for marker in self.failures):
            raise GenerationFailure(f"No completion content returned by model {model_id}")
        response = self.responses.get(kind)
        if response is None:
            return default_response(kind, prompt)
        return response(prompt) if callable(response) else response

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.calls]

    def reset(self) -> None:
        self.calls.clear()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        storage_backend="memory",
        stance_model=STANCE_MODEL,
        narrative_model=NARRATIVE_MODEL,
        visual_model=VISUAL_MODEL,
        summary_model=SUMMARY_MODEL,
        summary_extended_model=SUMMARY_EXTENDED_MODEL,
    )


@pytest.fixture
def project():
    return Project(
        id="p1",
        name="Riverside park",
        description="Redesign of the riverside park",
        extraction_topic="park redesign",
        context="Municipal consultation 2025",
        questions=[
            Question(id="q1", text="Should X?", stances=["Yes", "No"]),
            Question(id="q2", text="Should Y?", stances=["Yes", "No", "Unsure"]),
        ],
    )


@pytest.fixture
def comments():
    return [
        Comment(id="c1", project_id="p1", source_type="web", content="I support it"),
        Comment(id="c2", project_id="p1", source_type="paper", content="Keep the trees"),
        Comment(id="c3", project_id="p1", source_type="web", content="Yes please"),
        Comment(id="c4", project_id="p1", source_type=None, content="No opinion"),
    ]


@pytest.fixture
def fake_client():
    return FakeCompletionClient()


@pytest.fixture
def store():
    return InMemoryArtifactStore()


@pytest.fixture
def pipeline(fake_client, store, project, comments, test_settings):
    repository = InMemoryProjectRepository([project], comments)
    return AnalysisPipeline(fake_client, store, repository, test_settings)
