"""Client for the external visual analysis service.

The service is an OpenRouter-compatible chat completions endpoint that accepts
a screenshot as an image data URI plus a text prompt listing candidate
interactive elements. It answers with free text containing a JSON object that
judges navigation health and proposes tab-like regions.

Every transport, HTTP or parsing problem is raised as AnalysisServiceFailure so
callers can fall back to heuristic detection.
"""

import base64
import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import AnalysisServiceFailure

logger = logging.getLogger(__name__)


JSON_BLOCK = re.compile(r'\{[\s\S]*\}')


class AnalysisServiceConfig(BaseModel):
    """Configuration for the analysis service client."""

    api_key: Optional[str] = Field(default=None, description="Bearer token for the service")
    base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Base URL of the chat completions API"
    )
    model: str = Field(
        default="deepseek/deepseek-chat-v3-0324:free",
        description="Model identifier"
    )
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, gt=0)
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_elements: int = Field(default=50, gt=0, description="Candidate elements listed in the prompt")


class TabSuggestion(BaseModel):
    """One region proposed by the service."""

    element_index: int = Field(alias="elementIndex", description="1-based index into the element list")
    confidence: float = Field(default=0.0)
    tab_name: Optional[str] = Field(default=None, alias="tabName")
    reason: Optional[str] = None
    click_order: int = Field(default=0, alias="clickOrder")

    model_config = ConfigDict(populate_by_name=True)


class AnalysisResult(BaseModel):
    """Parsed service verdict."""

    navigation_issue: bool = Field(default=False, alias="navigationIssue")
    issue_type: Optional[str] = Field(default="none", alias="issueType")
    issue_description: Optional[str] = Field(default=None, alias="issueDescription")
    should_proceed: bool = Field(default=True, alias="shouldProceedWithScreenshots")
    navigation_action: Optional[str] = Field(default=None, alias="navigationAction")
    has_tabs: bool = Field(default=False, alias="hasTabs")
    tab_elements: List[TabSuggestion] = Field(default_factory=list, alias="tabElements")
    navigation_strategy: Optional[str] = Field(default=None, alias="navigationStrategy")
    recommendations: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


def build_prompt(
    elements: List[Dict[str, Any]],
    requested_url: str,
    current_url: str,
    title: str = "",
) -> str:
    """Render the analysis prompt for a page and its candidate elements."""
    lines = []
    for i, el in enumerate(elements, start=1):
        css_class = (el.get('className') or '').split(' ')[0]
        descriptor = el.get('tag', 'element')
        if css_class:
            descriptor += f".{css_class}"
        if el.get('id'):
            descriptor += f"#{el['id']}"
        rect = el.get('rect', {})
        lines.append(
            f"{i}. {descriptor}\n"
            f"   Text: \"{el.get('text', '')}\"\n"
            f"   Position: ({rect.get('x', 0)}, {rect.get('y', 0)}) "
            f"Size: {rect.get('width', 0)}x{rect.get('height', 0)}\n"
            f"   Role: {el.get('role', '')} | Aria-label: {el.get('ariaLabel', '')}"
        )

    return f"""You are an expert web navigation and UI analyzer. Analyze this webpage's navigation context and UI elements.

Navigation Context:
- Requested URL: {requested_url}
- Current URL: {current_url}
- Page Title: {title}

Interactive Elements Found:
{chr(10).join(lines) if lines else '(none)'}

Analyze the navigation context first. Respond with a JSON object:

{{
  "navigationIssue": boolean (true if on wrong page, login page, or error),
  "issueType": "login_required|error_page|wrong_page|access_denied|none",
  "shouldProceedWithScreenshots": boolean,
  "navigationAction": "login|retry|skip|proceed",
  "issueDescription": "explanation of the navigation problem",
  "hasTabs": boolean,
  "tabElements": [
    {{
      "elementIndex": number (from list above),
      "confidence": number (0-100),
      "tabName": "string",
      "reason": "why this is identified as a tab",
      "clickOrder": number
    }}
  ],
  "navigationStrategy": "description of how to navigate",
  "recommendations": ["suggestions based on page analysis"]
}}

Only identify tabs when the page is the requested page. Be conservative about tab identification."""


def parse_analysis(content: str) -> AnalysisResult:
    """Extract and validate the JSON verdict embedded in a model reply."""
    match = JSON_BLOCK.search(content if isinstance(content, str) else "")
    if not match:
        raise AnalysisServiceFailure("Analysis response does not contain a JSON object")
    try:
        return AnalysisResult.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError) as e:
        raise AnalysisServiceFailure(f"Analysis response is not a valid verdict: {e}")


class AnalysisClient:
    """Async client for the visual analysis service."""

    def __init__(
        self,
        config: Optional[AnalysisServiceConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or AnalysisServiceConfig()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=self.config.timeout_seconds, connect=10.0),
            limits=httpx.Limits(max_connections=5, max_keepalive_connections=2),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    async def analyze(
        self,
        screenshot: bytes,
        elements: List[Dict[str, Any]],
        requested_url: str,
        current_url: Optional[str] = None,
        title: str = "",
    ) -> AnalysisResult:
        """Submit a snapshot and structural summary and return the verdict.

        Raises:
            AnalysisServiceFailure: service unreachable, non-2xx, or unparseable
        """
        if not self.is_configured:
            raise AnalysisServiceFailure("Analysis service API key is not configured")

        elements = elements[:self.config.max_elements]
        prompt = build_prompt(elements, requested_url, current_url or requested_url, title)
        image = base64.b64encode(screenshot).decode('ascii')
        payload = {
            "model": self.config.model,
            "messages": [{
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{image}"}},
                ],
            }],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await self.client.post(
                f"{self.config.base_url.rstrip('/')}/chat/completions",
                json=payload,
                headers=headers,
            )
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
        except httpx.HTTPStatusError as e:
            raise AnalysisServiceFailure(
                f"Analysis service returned HTTP {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            )
        except httpx.RequestError as e:
            raise AnalysisServiceFailure(f"Analysis service request failed: {e}")
        except httpx.InvalidURL as e:
            raise AnalysisServiceFailure(f"Analysis service URL is invalid: {e}")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AnalysisServiceFailure(f"Analysis service response has unexpected shape: {e}")

        logger.debug(f"Analysis response: {str(content)[:200]}")
        return parse_analysis(content)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
