import asyncio
import json
import logging
import pathlib
import re
from typing import Any
from uuid import uuid4

import httpx
import jinja2
from openai import APIConnectionError
from openai import APITimeoutError
from openai import AsyncOpenAI
from openai import OpenAIError
from tenacity import AsyncRetrying
from tenacity import RetryCallState
from tenacity import stop_after_attempt
from tenacity import wait_exponential

from app.core.config import Settings
from app.core.config import settings
from app.core.exceptions import ConfigurationError
from app.core.exceptions import GenerationFailure
from app.core.exceptions import GenerationTimeout
from app.core.exceptions import ParseFailure
from app.core.exceptions import PromptTooLargeError

# Configure module logger
logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


# --- Reusable Jinja2 Environment ---
PROMPT_DIR = pathlib.Path(__file__).parent / "prompt_templates"
env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(PROMPT_DIR),
    keep_trailing_newline=True,
)


# ---------------------------------------------------------------
# Helper predicate for tenacity retry
# ---------------------------------------------------------------


def _should_retry_llm_call(retry_state: RetryCallState) -> bool:
    """Determines if a retry should occur based on the exception in RetryCallState."""
    if not retry_state.outcome:
        return False

    exc = retry_state.outcome.exception()
    if not exc:
        return False  # No exception, no need to retry

    # Unwrap our GenerationFailure to get to the original cause (e.g., OpenAIError)
    actual_exception = exc.__cause__ if isinstance(exc, GenerationFailure) and exc.__cause__ else exc

    if isinstance(actual_exception, APITimeoutError):
        return False
    if isinstance(actual_exception, APIConnectionError):
        logger.debug("Connection error detected. Retrying...")
        return True

    status = getattr(actual_exception, "status", None) or getattr(actual_exception, "status_code", None)
    if status in RETRYABLE_STATUS_CODES:
        logger.debug("Retryable API error status %s detected. Retrying...", status)
        return True
    return False


class CompletionClient:
    """Sends one prompt to an OpenAI-compatible endpoint and returns the raw completion text.

    Retries transient API failures with exponential backoff and bounds the whole
    call (retries included) by ``request_timeout``.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str,
        connect_timeout: float = 10.0,
        read_timeout: float = 180.0,
        request_timeout: float = 300.0,
        max_attempts: int = 3,
        retry_min_wait: float = 2.0,
        retry_max_wait: float = 10.0,
        max_tokens: int = 8000,
        temperature: float = 0.2,
        client: AsyncOpenAI | None = None,
    ):
        self.request_timeout = request_timeout
        self.max_attempts = max_attempts
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._timeout = httpx.Timeout(connect_timeout, read=read_timeout)
        self._api_key = api_key
        self._base_url = base_url
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # Created on first use so the app can start without a key configured
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError("OPENROUTER_API_KEY is not configured.")
            self._client = AsyncOpenAI(
                base_url=self._base_url,
                api_key=self._api_key,
                default_headers={
                    "X-Title": "consultation-analysis",
                    # Authorization is auto-added from api_key
                },
                timeout=self._timeout,
                max_retries=0,  # retries are handled by tenacity below
            )
        return self._client

    @classmethod
    def from_settings(cls, config: Settings) -> "CompletionClient":
        return cls(
            api_key=config.openrouter_api_key,
            base_url=config.openrouter_base_url,
            connect_timeout=config.LLM_CONNECT_TIMEOUT,
            read_timeout=config.LLM_READ_TIMEOUT,
            request_timeout=config.llm_request_timeout,
            max_attempts=config.llm_max_attempts,
            retry_min_wait=config.llm_retry_min_wait,
            retry_max_wait=config.llm_retry_max_wait,
            max_tokens=config.llm_max_tokens,
            temperature=config.llm_temperature,
        )

    async def complete(self, model_id: str, prompt: str, request_id: str | None = None) -> str:
        """Return the completion for *prompt*.

        Raises:
            GenerationTimeout: the call did not finish within ``request_timeout``.
            GenerationFailure: transport/API error or an empty completion.
        """
        request_id = request_id or str(uuid4())
        retrying = AsyncRetrying(
            wait=wait_exponential(multiplier=1, min=self.retry_min_wait, max=self.retry_max_wait),
            stop=stop_after_attempt(self.max_attempts),
            retry=_should_retry_llm_call,
            reraise=True,
        )
        try:
            return await asyncio.wait_for(
                retrying(self._create_completion, model_id, prompt, request_id),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("[%s] LLM call exceeded %.1fs with model %s", request_id, self.request_timeout, model_id)
            raise GenerationTimeout(f"LLM call timed out after {self.request_timeout}s") from e

    async def _create_completion(self, model_id: str, prompt: str, request_id: str) -> str:
        logger.info("[%s] Making LLM API call with model: %s", request_id, model_id)
        client = self.client
        try:
            rsp = await client.chat.completions.create(
                model=model_id,
                messages=[
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                timeout=self._timeout,
            )
        except APITimeoutError as e:
            logger.error("[%s] LLM API call timed out: %s", request_id, str(e))
            raise GenerationTimeout(f"LLM API call timed out: {str(e)}") from e
        except OpenAIError as e:
            # tenacity decides whether to retry by looking at the wrapped cause
            logger.error("[%s] OpenAI API error: %s", request_id, str(e), exc_info=True)
            raise GenerationFailure(f"OpenAI API error: {str(e)}") from e
        except Exception as e:
            logger.exception("[%s] Unexpected error in LLM call", request_id)
            raise GenerationFailure(f"Unexpected error in LLM call: {str(e)}") from e

        if not rsp or not getattr(rsp, "choices", None):
            logger.error("[%s] Invalid response structure from LLM API: %s", request_id, str(rsp))
            raise GenerationFailure("Invalid response structure from LLM API")

        message = getattr(rsp.choices[0], "message", None)
        content = getattr(message, "content", None) if message is not None else None
        if not content or not content.strip():
            logger.error("[%s] LLM returned no content (model %s)", request_id, model_id)
            raise GenerationFailure(f"No completion content returned by model {model_id}")

        logger.debug("[%s] LLM response received, length: %d chars", request_id, len(content))
        return content


# ---------------------------------------------------------------
# Completion sanitization
# ---------------------------------------------------------------
# Tags the generation prompts ask for; these are removed even without a newline after them
_FENCE_TAGS = ("html", "markdown", "md", "json")
_LEADING_MARKER = re.compile(
    r'^(?:```[\w+-]*[ \t]*\r?\n|```(?:' + "|".join(_FENCE_TAGS) + r')(?![\w+-])|```|""")',
    re.IGNORECASE,
)
_TRAILING_MARKER = re.compile(r'(?:```|""")$')


def sanitize_completion(text: str) -> str:
    """Strip wrapping code fences (with optional language tag) and triple quotes.

    Runs until nothing changes, so applying it to its own output is a no-op.
    """
    cleaned = text.strip()
    while True:
        stripped = _LEADING_MARKER.sub("", cleaned, count=1)
        stripped = _TRAILING_MARKER.sub("", stripped, count=1).strip()
        if stripped == cleaned:
            return cleaned
        cleaned = stripped


# ---------------------------------------------------------------
# JSON extractor helper
# ---------------------------------------------------------------
def extract_json(text: str) -> Any:
    """Attempts to robustly extract and parse JSON from LLM responses, handling markdown fences and extraneous text."""
    request_id = str(uuid4())
    logger.debug("[%s] Attempting to parse JSON response, length: %d", request_id, len(text))

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.warning("[%s] Initial JSON parse failed, attempting extraction strategies...", request_id)

    # Strategy 1: Markdown Code Fence Extraction
    match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text, re.DOTALL)
    if match:
        try:
            result = json.loads(match.group(1))
            logger.info("[%s] Successfully parsed JSON from markdown code fence.", request_id)
            return result
        except json.JSONDecodeError:
            logger.warning("[%s] Failed to parse JSON from fenced block, trying next strategy...", request_id)

    # Strategy 2: Use JSONDecoder().raw_decode for first object/array
    decoder = json.JSONDecoder()
    obj_start = text.find("{")
    arr_start = text.find("[")
    if obj_start == -1 and arr_start == -1:
        logger.error("[%s] No JSON object or array marker found in response", request_id)
        raise ParseFailure("No JSON object or array marker found in response")
    start_pos = min(pos for pos in (obj_start, arr_start) if pos != -1)
    try:
        obj, _ = decoder.raw_decode(text, start_pos)
        logger.info("[%s] Successfully parsed JSON using raw_decode.", request_id)
        return obj
    except json.JSONDecodeError as e:
        logger.error("[%s] Failed to parse JSON using raw_decode: %s", request_id, str(e))
    raise ParseFailure("All strategies to parse JSON from LLM response failed.")


# ---------------------------------------------------------------
# Prompt rendering and the shared completion step
# ---------------------------------------------------------------
def render_prompt(template_name: str, context: dict[str, Any], max_chars: int | None = None) -> str:
    """Render a prompt template, enforcing the configured size limit."""
    limit = max_chars if max_chars is not None else settings.max_total_prompt_chars
    try:
        prompt = env.get_template(template_name).render(**context)
    except jinja2.TemplateNotFound:
        logger.error("Template not found: %s", template_name)
        raise ConfigurationError(f"Internal configuration error: Template '{template_name}' not found.") from None
    except jinja2.TemplateError as e:
        logger.exception("Failed to render template %s", template_name)
        raise ConfigurationError(f"Failed to render template '{template_name}'.") from e

    if len(prompt) > limit:
        logger.warning("Prompt too large for %s: %d chars (limit %d)", template_name, len(prompt), limit)
        raise PromptTooLargeError(f"Prompt too large: {len(prompt)} chars exceeds limit of {limit}")
    return prompt


async def execute_completion_step(
    client: CompletionClient,
    request_id: str,
    step_name: str,
    template_name: str,
    context: dict[str, Any],
    model_id: str,
    max_prompt_chars: int | None = None,
) -> str:
    """Executes a single generation step: render template, call LLM, sanitize the completion."""
    logger.debug("[%s] Executing LLM step: %s", request_id, step_name)
    prompt = render_prompt(template_name, context, max_prompt_chars)
    raw_response = await client.complete(model_id, prompt, request_id=request_id)
    text = sanitize_completion(raw_response or "")
    if not text:
        logger.error("[%s] Step '%s' produced an empty completion after sanitization", request_id, step_name)
        raise GenerationFailure(f"Empty completion for step '{step_name}'")
    logger.debug("[%s] Successfully executed LLM step: %s (%d chars)", request_id, step_name, len(text))
    return text
