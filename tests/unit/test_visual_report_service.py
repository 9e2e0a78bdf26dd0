import pytest

from app.core.exceptions import PartialAggregationFailure
from app.models.analysis_models import ArtifactKey
from app.models.analysis_models import ArtifactKind

from conftest import VISUAL_MODEL

VISUAL_KEY = ArtifactKey(ArtifactKind.VISUAL_REPORT, "p1")


@pytest.mark.asyncio
async def test_cold_visual_report_builds_the_whole_chain(pipeline, fake_client, store, project, comments):
    report = await pipeline.visual_report.get_or_create_visual_report(project, comments)

    assert sorted(fake_client.kinds()) == ["narrative", "stance", "stance", "visual"]
    assert fake_client.calls[-1][1] == VISUAL_MODEL
    assert report.overall_analysis == "<html><body>report</body></html>"
    assert report.project_name == "Riverside park"
    assert await store.get(VISUAL_KEY) == report.model_dump(mode="json")


@pytest.mark.asyncio
async def test_visual_prompt_carries_narrative_and_design(pipeline, fake_client, project, comments):
    await pipeline.visual_report.get_or_create_visual_report(project, comments)

    prompt = fake_client.calls[-1][2]
    assert "# Overall report" in prompt
    assert "1E5EF3" in prompt
    assert "Zen Maru Gothic" in prompt
    assert "max width 600px" in prompt


@pytest.mark.asyncio
async def test_hit_makes_no_calls(pipeline, fake_client, project, comments):
    first = await pipeline.visual_report.get_or_create_visual_report(project, comments)
    fake_client.reset()

    second = await pipeline.visual_report.get_or_create_visual_report(project, comments)

    assert fake_client.calls == []
    assert second == first


@pytest.mark.asyncio
async def test_forced_visual_refresh_also_refreshes_narrative(pipeline, fake_client, store, project, comments):
    await pipeline.visual_report.get_or_create_visual_report(project, comments)
    fake_client.reset()
    fake_client.responses["narrative"] = "New narrative"
    fake_client.responses["visual"] = "<html>new</html>"

    report = await pipeline.visual_report.get_or_create_visual_report(project, comments, force_regenerate=True)

    assert fake_client.kinds() == ["narrative", "visual"]
    assert report.overall_analysis == "<html>new</html>"
    assert (await pipeline.project_report.get_report("p1")).overall_analysis == "New narrative"
    assert (await store.get(VISUAL_KEY))["overall_analysis"] == "<html>new</html>"


@pytest.mark.asyncio
async def test_upstream_failure_leaves_no_visual_artifact(pipeline, fake_client, store, project, comments):
    fake_client.failures.add("Should X?")

    with pytest.raises(PartialAggregationFailure):
        await pipeline.visual_report.get_or_create_visual_report(project, comments)

    assert "visual" not in fake_client.kinds()
    assert await store.get(VISUAL_KEY) is None
