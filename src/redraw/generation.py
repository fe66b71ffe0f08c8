"""Client for the external design-generation and content-analysis service.

Every call is a `generateContent` POST. The HTTP work is blocking
(`requests`), so each call runs on the client's own thread pool, sized to the
pipeline concurrency so that a full batch can be in flight at once.
"""

import asyncio
import functools
import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import requests

from .config import PLACEHOLDER_API_KEY, Settings
from .errors import AnalysisError, ConfigurationError, GenerationError
from .models import DesignRequest, StyleFile, StyleProfile
from .prompts import ANALYSIS_PROMPT, STYLE_PROMPT, build_design_prompt

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:[^;,]+;base64,")
_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_BARE_JSON = re.compile(r"\{[\s\S]*\}")


def strip_data_url(data: str) -> str:
    """Return the raw base64 payload of a data URL"""
    return _DATA_URL_PREFIX.sub("", data)


def inline_image(data: str, mime_type: str = "image/png") -> Dict[str, Any]:
    return {"inline_data": {"mime_type": mime_type, "data": strip_data_url(data)}}


def extract_image(response: Dict[str, Any]) -> Optional[str]:
    """First inline image of the first candidate, as a data URL"""
    for part in _first_candidate_parts(response):
        inline = part.get("inline_data") or part.get("inlineData")
        if isinstance(inline, dict) and isinstance(inline.get("data"), str) and inline["data"]:
            mime = inline.get("mime_type") or inline.get("mimeType") or "image/png"
            return f"data:{mime};base64,{inline['data']}"
    return None


def extract_text(response: Dict[str, Any]) -> str:
    for part in _first_candidate_parts(response):
        text = part.get("text")
        if isinstance(text, str) and text:
            return text
    return ""


def _first_candidate_parts(response: Any) -> List[Dict[str, Any]]:
    """Parts of the first candidate; anything malformed reads as no parts"""
    candidates = response.get("candidates") if isinstance(response, dict) else None
    if not isinstance(candidates, list) or not candidates:
        return []
    first = candidates[0]
    content = first.get("content") if isinstance(first, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def parse_style_profile(text: str) -> StyleProfile:
    fenced = _FENCED_JSON.search(text)
    if fenced:
        raw = fenced.group(1)
    else:
        bare = _BARE_JSON.search(text)
        raw = bare.group(0) if bare else text
    try:
        return StyleProfile.model_validate(json.loads(raw.strip()))
    except ValueError:
        raise GenerationError("could not parse style profile", body=text) from None


class GenerationClient:
    """Design generation and content analysis over the Gemini REST API"""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.apiyi.com/v1beta",
        model: str = "gemini-3-pro-image-preview",
        analysis_api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_workers: int = 10,
    ):
        self.api_key = api_key
        self.analysis_api_key = analysis_api_key or api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="redraw-generation"
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationClient":
        return cls(
            api_key=settings.resolved_api_key(),
            base_url=settings.resolved_base_url(),
            model=settings.gemini_model,
            analysis_api_key=settings.resolved_analysis_api_key(),
            timeout=settings.request_timeout,
            max_workers=settings.concurrency,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self.api_key != PLACEHOLDER_API_KEY

    def ensure_configured(self):
        if not self.configured:
            raise ConfigurationError(
                "Generation API key is not configured. Set GEMINI_API_KEY."
            )

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _post(self, payload: Dict[str, Any], api_key: str) -> Dict[str, Any]:
        """Blocking POST; raises GenerationError on any failure"""
        try:
            response = requests.post(
                self.endpoint,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GenerationError(f"request failed: {e}") from e

        if not response.ok:
            raise GenerationError(
                f"API request failed [{response.status_code}]: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError:
            raise GenerationError(
                "response is not valid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from None
        if not isinstance(data, dict):
            raise GenerationError("unexpected response shape", body=response.text)
        return data

    async def _call(self, payload: Dict[str, Any], api_key: str) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, functools.partial(self._post, payload, api_key)
        )

    def build_design_payload(self, request: DesignRequest) -> Dict[str, Any]:
        """Request body embedding the explicit target size and orientation"""
        parts: List[Dict[str, Any]] = [{"text": build_design_prompt(request)}]
        if request.image_data:
            parts.append(inline_image(request.image_data))
        if request.brand_info.logo_base64:
            parts.append(inline_image(request.brand_info.logo_base64))

        return {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["IMAGE"],
                "imageConfig": {
                    "aspectRatio": request.aspect_ratio,
                    "imageSize": "1K",
                },
            },
        }

    async def generate_design(self, request: DesignRequest) -> str:
        """Generate one redesigned page and return it as a data URL"""
        self.ensure_configured()
        payload = self.build_design_payload(request)
        data = await self._call(payload, self.api_key)

        image = extract_image(data)
        if image is None:
            raise GenerationError("no image in response", body=json.dumps(data)[:500])
        return image

    async def _analyze(self, image_data: str) -> str:
        if not self.analysis_api_key or self.analysis_api_key == PLACEHOLDER_API_KEY:
            raise AnalysisError("analysis API key is not configured")
        payload = {
            "contents": [{"parts": [{"text": ANALYSIS_PROMPT}, inline_image(image_data)]}]
        }
        try:
            data = await self._call(payload, self.analysis_api_key)
        except GenerationError as e:
            raise AnalysisError(str(e)) from e
        return extract_text(data)

    async def analyze_content(self, image_data: str) -> str:
        """Best-effort description of a page; empty string on any failure"""
        try:
            return await self._analyze(image_data)
        except Exception as e:
            logger.warning("generation event=analysis_failed error=%s", e)
            return ""

    async def analyze_style(self, files: List[StyleFile]) -> StyleProfile:
        """Extract a style profile from up to three reference files"""
        self.ensure_configured()
        parts: List[Dict[str, Any]] = [{"text": STYLE_PROMPT}]
        for item in files[:3]:
            mime = "application/pdf" if "pdf" in item.type else item.type
            parts.append(inline_image(item.data, mime))

        data = await self._call({"contents": [{"parts": parts}]}, self.analysis_api_key)
        return parse_style_profile(extract_text(data))
