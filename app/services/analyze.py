import asyncio
import base64
import json
import logging
from typing import Awaitable, Callable

import httpx
from openai import APIConnectionError, APIError, AsyncOpenAI, AuthenticationError, RateLimitError
from pydantic import ValidationError
from pypdf.errors import PdfReadError

from app.core.config import get_openai_keys, settings
from app.schemas.record import AnalysisResult, UrgencyLevel
from app.services.pdf_extract import extract_text_from_pdf

logger = logging.getLogger(__name__)
OPENAI_TIMEOUT = 30.0
OPENAI_RETRY_WAIT = 1.5
OPENAI_RETRY_ONCE = (RateLimitError, APIConnectionError)

# One client per key (multi-key fallback)
_openai_clients: dict[str, AsyncOpenAI] = {}

# The next key is tried when one is rejected or rate limited
OPENAI_FALLBACK_EXCEPTIONS = (AuthenticationError, RateLimitError)

PDF_PLACEHOLDER = "PDF content extraction not implemented yet. Please analyze based on file name and type."

ANALYSIS_PROMPT = """You are a medical AI assistant. Analyze this medical document and provide a structured response in the following JSON format:

{
  "summary": "Brief 2-3 sentence summary of the document",
  "keyFindings": ["finding1", "finding2", "finding3"],
  "medications": ["medication1", "medication2"],
  "recommendations": ["recommendation1", "recommendation2"],
  "urgencyLevel": "low|medium|high",
  "documentType": "prescription|lab-report|medical-bill|scan-report|consultation|vaccination|vital-signs|other"
}

Important guidelines:
- Be accurate and only extract information that is clearly present
- If information is not available, use empty arrays or appropriate default values
- Urgency levels: low (routine), medium (follow-up needed), high (immediate attention)
- Focus on medical relevance and patient safety

Document to analyze: """

Completion = Callable[[list[dict]], Awaitable[str]]


class AnalysisUnavailable(Exception):
    """No usable analysis: service unreachable or misbehaving, or the model output did not match the schema."""


def fallback_analysis(filename: str, content_type: str, size: int) -> AnalysisResult:
    """Deterministic stand-in used by the upload pipeline when analysis fails."""
    return AnalysisResult(
        summary=f"Analysis of {filename} ({content_type}) - {round(size / 1024)}KB",
        key_findings=["Document uploaded for review"],
        medications=[],
        recommendations=[],
        urgency_level=UrgencyLevel.LOW,
        document_type="other",
    )


UNCONFIGURED_FINDING = "Document analysis unavailable - API key not configured"


def unconfigured_analysis() -> AnalysisResult:
    return AnalysisResult(
        summary="Document uploaded successfully",
        key_findings=[UNCONFIGURED_FINDING],
        medications=[],
        recommendations=["Please configure OPENAI_API_KEY in environment variables"],
        urgency_level=UrgencyLevel.LOW,
        document_type="other",
    )


def is_unconfigured_analysis(result: AnalysisResult) -> bool:
    """True for the degraded result an analyzer without an API key returns, locally or over HTTP."""
    return UNCONFIGURED_FINDING in result.key_findings


def document_text(content: bytes, content_type: str, filename: str, pdf_text_extraction: bool = False) -> str:
    """What the model reads for non-image documents."""
    if content_type.startswith("text/"):
        return content.decode("utf-8", errors="replace")
    if content_type == "application/pdf":
        if pdf_text_extraction:
            try:
                text = extract_text_from_pdf(content)
            except (PdfReadError, ValueError) as e:
                logger.warning("PDF text extraction failed for %s: %s", filename, e)
                text = ""
            if text:
                return text
        return PDF_PLACEHOLDER
    return f"File: {filename}, Type: {content_type}, Size: {len(content)} bytes"


def build_messages(content: bytes, content_type: str, filename: str, pdf_text_extraction: bool = False) -> list[dict]:
    if content_type.startswith("image/"):
        b64 = base64.standard_b64encode(content).decode("utf-8")
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": ANALYSIS_PROMPT},
                    {"type": "image_url", "image_url": {"url": f"data:{content_type};base64,{b64}", "detail": "high"}},
                ],
            }
        ]
    text = document_text(content, content_type, filename, pdf_text_extraction)
    return [{"role": "user", "content": f"{ANALYSIS_PROMPT}\n\nFile content:\n{text}"}]


def extract_json_object(text: str) -> str | None:
    """First balanced {...} span of `text`; braces inside JSON strings do not count."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def parse_analysis_response(text: str) -> AnalysisResult:
    span = extract_json_object(text or "")
    if span is None:
        raise AnalysisUnavailable("No valid JSON found in AI response")
    try:
        payload = json.loads(span)
    except json.JSONDecodeError as e:
        raise AnalysisUnavailable(f"AI response is not valid JSON: {e.msg}") from e
    try:
        return AnalysisResult.model_validate(payload)
    except ValidationError as e:
        raise AnalysisUnavailable(f"AI response does not match the analysis schema ({e.error_count()} errors)") from e


def _get_client_for_key(key: str) -> AsyncOpenAI:
    if key not in _openai_clients:
        _openai_clients[key] = AsyncOpenAI(api_key=key, timeout=OPENAI_TIMEOUT)
    return _openai_clients[key]


async def _openai_safe_call(create_fn):
    """Runs the OpenAI call; on RateLimitError/APIConnectionError waits 1.5 s and tries once more."""
    try:
        return await create_fn()
    except OPENAI_RETRY_ONCE as e:
        logger.warning("OpenAI retry after %s: %s", type(e).__name__, e)
        await asyncio.sleep(OPENAI_RETRY_WAIT)
        return await create_fn()


def _openai_error_message(exc: Exception) -> str:
    if isinstance(exc, AuthenticationError):
        return "AI access failed: check OPENAI_API_KEY and billing."
    if isinstance(exc, RateLimitError):
        return "AI is busy: please try again shortly."
    if isinstance(exc, APIConnectionError):
        return "AI connection problem: the service is temporarily unreachable."
    return "AI service error: this may be temporary."


class DocumentAnalyzer:
    """
    OpenAI-backed analysis of one document.

    `complete` replaces the OpenAI round trip: it receives the chat messages and
    returns the model's raw text.
    """

    def __init__(
        self,
        complete: Completion | None = None,
        model: str | None = None,
        pdf_text_extraction: bool | None = None,
    ):
        self._complete = complete
        self.model = model or settings.openai_model
        self.pdf_text_extraction = settings.pdf_text_extraction if pdf_text_extraction is None else pdf_text_extraction

    @property
    def configured(self) -> bool:
        return self._complete is not None or bool(get_openai_keys())

    async def analyze(self, content: bytes, content_type: str, filename: str) -> AnalysisResult:
        if not self.configured:
            logger.error("OPENAI_API_KEY not configured, returning degraded analysis for %s", filename)
            return unconfigured_analysis()
        logger.info("Analyzing %s (%s, %s bytes)", filename, content_type, len(content))
        messages = build_messages(content, content_type, filename, self.pdf_text_extraction)
        complete = self._complete or self._openai_complete
        try:
            text = await complete(messages)
        except (AuthenticationError, RateLimitError, APIConnectionError, APIError) as e:
            logger.exception("OpenAI API error in analyze: %s", e)
            raise AnalysisUnavailable(_openai_error_message(e)) from e
        logger.debug("Raw AI response: %s", text)
        return parse_analysis_response(text)

    async def _openai_complete(self, messages: list[dict]) -> str:
        """Tries each configured key in turn; the last auth/rate-limit error is raised when all fail."""
        last_exc: Exception | None = None
        for key in get_openai_keys():
            client = _get_client_for_key(key)
            try:
                response = await _openai_safe_call(
                    lambda: client.chat.completions.create(
                        model=self.model,
                        messages=messages,
                        temperature=0.2,
                        max_tokens=1000,
                    )
                )
            except OPENAI_FALLBACK_EXCEPTIONS as e:
                last_exc = e
                logger.warning("OpenAI key skipped (%s), trying the next one: %s", key[:12] + "...", e)
                continue
            return response.choices[0].message.content or ""
        if last_exc is not None:
            raise last_exc
        raise AnalysisUnavailable("No valid OpenAI key.")


class RemoteDocumentAnalyzer:
    """Analysis through another MedRecord instance's POST /api/analyze-document."""

    def __init__(self, base_url: str, timeout: float = OPENAI_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def analyze(self, content: bytes, content_type: str, filename: str) -> AnalysisResult:
        url = f"{self.base_url}/api/analyze-document"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(url, files={"file": (filename, content, content_type)})
        except httpx.HTTPError as e:
            raise AnalysisUnavailable(f"Analysis service unreachable: {e}") from e
        try:
            payload = r.json()
        except ValueError:
            payload = None
        if r.status_code != 200:
            message = payload.get("error") if isinstance(payload, dict) else None
            raise AnalysisUnavailable(message or f"HTTP error! status: {r.status_code}")
        if not isinstance(payload, dict):
            raise AnalysisUnavailable("Analysis service returned invalid JSON")
        try:
            return AnalysisResult.model_validate(payload)
        except ValidationError as e:
            raise AnalysisUnavailable(f"Analysis service response does not match the analysis schema ({e.error_count()} errors)") from e
