import logging
from collections.abc import Callable
from functools import wraps
from typing import Any
from typing import Literal
from uuid import uuid4

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import Request
from fastapi.responses import Response

from app.core.exceptions import NotFoundError
from app.core.exceptions import PipelineError
from app.core.exceptions import PromptTooLargeError
from app.core.security import verify_api_key
from app.generation_logic.exports import _csv_download_response
from app.generation_logic.exports import _summary_download_response
from app.models.analysis_models import ProjectReport
from app.models.analysis_models import StanceAnalysis
from app.models.analysis_models import SummaryDocuments
from app.models.analysis_models import SummaryKind
from app.models.analysis_models import VisualReport
from app.services.pipeline import AnalysisPipeline

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(verify_api_key)])


def get_pipeline(request: Request) -> AnalysisPipeline:
    return request.app.state.pipeline


# --- Error Handling Decorator for analysis endpoints ---
def handle_analysis_errors(func: Callable) -> Callable:
    """Assign a request id and translate pipeline errors into HTTP errors."""

    @wraps(func)
    async def wrapper(request: Request, *args: Any, **kwargs: Any) -> Any:
        request_id = str(uuid4())
        request.state.request_id = request_id

        try:
            return await func(request, *args, **kwargs)
        except NotFoundError as e:
            logger.warning("[%s] %s", request_id, str(e))
            raise HTTPException(status_code=404, detail=str(e)) from e
        except PromptTooLargeError as e:
            logger.error("[%s] Prompt too large: %s", request_id, str(e))
            raise HTTPException(status_code=413, detail=str(e)) from e
        except PipelineError as e:
            logger.error(
                "[%s] %s during %s: %s",
                request_id,
                type(e).__name__,
                func.__name__,
                str(e),
                exc_info=False,  # Details are logged where the error originated
            )
            raise HTTPException(status_code=500, detail=str(e)) from e
        except HTTPException:
            raise
        except Exception as e:
            logger.error("[%s] Unexpected error during %s: %s", request_id, func.__name__, str(e), exc_info=True)
            raise HTTPException(
                status_code=500,
                detail=f"An unexpected server error occurred during analysis (trace: {request_id}).",
            ) from e

    return wrapper


ForceRegenerate = Query(False, alias="forceRegenerate", description="Bypass stored artifacts and regenerate.")
CustomPrompt = Query(None, alias="customPrompt", description="Optional instructions replacing the default ones.")


@router.get("/projects/{project_id}/questions/{question_id}/stance-analysis", response_model=StanceAnalysis)
@handle_analysis_errors
async def stance_analysis(
    request: Request,
    project_id: str,
    question_id: str,
    force_regenerate: bool = ForceRegenerate,
    custom_prompt: str | None = CustomPrompt,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
) -> StanceAnalysis:
    """Stance breakdown for one question. This is the only route that regenerates stance artifacts."""
    request_id = request.state.request_id
    project, comments = await pipeline.load_project(project_id)
    question = pipeline.require_question(project, question_id)
    return await pipeline.stance.get_or_create_stance_analysis(
        project.id,
        question.id,
        question.text,
        question.stances,
        comments,
        force_regenerate=force_regenerate,
        custom_prompt=custom_prompt,
        request_id=request_id,
    )


@router.get("/projects/{project_id}/analysis", response_model=ProjectReport)
@handle_analysis_errors
async def project_analysis(
    request: Request,
    project_id: str,
    force_regenerate: bool = ForceRegenerate,
    custom_prompt: str | None = CustomPrompt,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
) -> ProjectReport:
    """Project-wide narrative report (markdown)."""
    project, comments = await pipeline.load_project(project_id)
    return await pipeline.project_report.get_or_create_project_report(
        project,
        comments,
        force_regenerate=force_regenerate,
        custom_prompt=custom_prompt,
        request_id=request.state.request_id,
    )


@router.get("/projects/{project_id}/visual-analysis", response_model=VisualReport)
@handle_analysis_errors
async def project_visual_analysis(
    request: Request,
    project_id: str,
    force_regenerate: bool = ForceRegenerate,
    custom_prompt: str | None = CustomPrompt,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
) -> VisualReport:
    """Project report rendered as HTML+CSS."""
    project, comments = await pipeline.load_project(project_id)
    return await pipeline.visual_report.get_or_create_visual_report(
        project,
        comments,
        force_regenerate=force_regenerate,
        custom_prompt=custom_prompt,
        request_id=request.state.request_id,
    )


@router.get("/projects/{project_id}/export-csv")
@handle_analysis_errors
async def export_csv(
    request: Request,
    project_id: str,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
) -> Response:
    """Raw project comments as a CSV attachment. No generation involved."""
    project, comments = await pipeline.load_project(project_id)
    return _csv_download_response(project, comments, request.state.request_id)


@router.get("/projects/{project_id}/llms-txt", response_model=SummaryDocuments)
@handle_analysis_errors
async def llms_txt(
    request: Request,
    project_id: str,
    force_regenerate: bool = ForceRegenerate,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
) -> SummaryDocuments:
    """Both summary documents (llms.txt and llms-full.txt) as JSON."""
    project, comments = await pipeline.load_project(project_id)
    return await pipeline.summary_export.generate_summary_documents(
        project,
        comments,
        force_regenerate=force_regenerate,
        request_id=request.state.request_id,
    )


@router.get("/projects/{project_id}/llms-txt/download")
@handle_analysis_errors
async def llms_txt_download(
    request: Request,
    project_id: str,
    doc_type: Literal["basic", "full"] = Query("basic", alias="type"),
    force_regenerate: bool = ForceRegenerate,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
) -> Response:
    """One summary document as a markdown attachment; only the requested one is generated."""
    request_id = request.state.request_id
    kind = SummaryKind.EXTENDED if doc_type == "full" else SummaryKind.CONCISE
    project, comments = await pipeline.load_project(project_id)
    documents = await pipeline.summary_export.generate_summary_documents(
        project,
        comments,
        force_regenerate=force_regenerate,
        kinds=[kind],
        request_id=request_id,
    )
    return _summary_download_response(documents, kind, request_id)
