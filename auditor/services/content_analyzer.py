"""
Content Analyzer - AI text quality analysis.

Sends a page's title and content to OpenAI (chat completions) or Anthropic
(messages), selected by settings.AI_PROVIDER, and turns the reply into a
list of validated issues plus a quality score.

Scoring: 100 minus the summed severity weights (low 5, medium 15,
high 30), floored at 0.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from django.conf import settings

from auditor.exceptions import ContentAnalysisError
from auditor.models import IssueType, Severity
from auditor.services.prompt_settings import DEFAULT_ANALYSIS_PROMPT, render_prompt

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {
    Severity.LOW: 5,
    Severity.MEDIUM: 15,
    Severity.HIGH: 30,
}

SYSTEM_MESSAGE = "Du bist ein Experte für Textqualitäts-Analyse. Antworte nur mit gültigem JSON."

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\[{][\s\S]*[\]}])\s*```")


@dataclass
class AnalysisIssue:
    """One validated issue from the model output."""

    issue_type: str
    severity: str
    description: str
    snippet: str
    suggestion: Optional[str] = None


@dataclass
class AnalysisResult:
    """Outcome of analysing one page."""

    quality_score: int
    issues: List[AnalysisIssue] = field(default_factory=list)


def calculate_quality_score(issues: List[AnalysisIssue]) -> int:
    """Score from 100 down by the severity weight of every issue, floored at 0."""
    deduction = sum(SEVERITY_WEIGHTS[Severity(issue.severity)] for issue in issues)
    return max(0, 100 - deduction)


def validate_issues(raw_issues: Any) -> List[AnalysisIssue]:
    """
    Keep well-formed issues, dropping unknown types or severities.

    Args:
        raw_issues: Decoded list from the model output

    Returns:
        Validated AnalysisIssue list (order preserved)
    """
    if not isinstance(raw_issues, list):
        return []

    valid_types = set(IssueType.values)
    valid_severities = set(Severity.values)

    issues = []
    for item in raw_issues:
        if not isinstance(item, dict):
            continue
        if item.get("type") not in valid_types or item.get("severity") not in valid_severities:
            logger.debug(f"Dropping issue with type/severity {item.get('type')}/{item.get('severity')}")
            continue
        if not isinstance(item.get("description"), str) or not isinstance(item.get("snippet"), str):
            continue

        suggestion = item.get("suggestion")
        issues.append(
            AnalysisIssue(
                issue_type=item["type"],
                severity=item["severity"],
                description=item["description"],
                snippet=item["snippet"],
                suggestion=suggestion if isinstance(suggestion, str) and suggestion else None,
            )
        )
    return issues


def extract_issue_list(text: str) -> List[Any]:
    """
    Pull the issue array out of raw model text.

    Accepts a bare JSON array, an object with an "issues" array, or either
    wrapped in a ```json fenced block.

    Raises:
        ContentAnalysisError: No parseable JSON found
    """
    candidates = [text.strip()]
    match = FENCED_JSON_RE.search(text)
    if match:
        candidates.append(match.group(1))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict):
            issues = parsed.get("issues", [])
            return issues if isinstance(issues, list) else []

    raise ContentAnalysisError("Failed to parse AI response as JSON")


class ContentAnalyzer:
    """
    Async HTTP client for the configured AI provider.

    No SDK is used; both provider APIs are plain JSON over HTTPS.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the analyzer.

        Args:
            provider: "openai" or "anthropic" (defaults to settings.AI_PROVIDER)
            api_key: Provider API key (defaults to the provider's setting)
            model: Model name (defaults to the provider's setting)
            timeout: Request timeout in seconds (defaults to settings.AI_REQUEST_TIMEOUT)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.provider = (provider or getattr(settings, "AI_PROVIDER", "openai")).lower()
        if self.provider not in ("openai", "anthropic"):
            raise ValueError(f"Unknown AI_PROVIDER: {self.provider!r}")

        if self.provider == "anthropic":
            self.api_key = api_key or getattr(settings, "ANTHROPIC_API_KEY", "")
            self.model = model or getattr(settings, "ANTHROPIC_MODEL", "claude-3-haiku-20240307")
        else:
            self.api_key = api_key or getattr(settings, "OPENAI_API_KEY", "")
            self.model = model or getattr(settings, "OPENAI_MODEL", "gpt-4o-mini")

        if timeout is None:
            timeout = float(getattr(settings, "AI_REQUEST_TIMEOUT", 60))
        self.timeout = timeout
        self._transport = transport

    async def analyze(self, title: str, content: str, prompt: Optional[str] = None) -> AnalysisResult:
        """
        Analyse a page's text quality.

        Args:
            title: Page title
            content: Extracted page content
            prompt: Prompt template with {title}/{content} (defaults to the built-in one)

        Returns:
            AnalysisResult with score and validated issues

        Raises:
            ContentAnalysisError: Missing key, provider error or unusable output
        """
        if not self.api_key:
            raise ContentAnalysisError(f"API key for AI provider '{self.provider}' is not set")

        rendered = render_prompt(prompt or DEFAULT_ANALYSIS_PROMPT, title, content)

        logger.debug(
            f"Calling {self.provider} ({self.model}) for analysis "
            f"(content length: {len(content or '')} chars)"
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                if self.provider == "anthropic":
                    text = await self._call_anthropic(client, rendered)
                else:
                    text = await self._call_openai(client, rendered)
        except httpx.TimeoutException as e:
            raise ContentAnalysisError(f"AI analysis failed: timeout after {self.timeout}s ({e})")
        except httpx.HTTPError as e:
            raise ContentAnalysisError(f"AI analysis failed: {e}")

        issues = validate_issues(extract_issue_list(text))
        return AnalysisResult(quality_score=calculate_quality_score(issues), issues=issues)

    async def _call_openai(self, client: httpx.AsyncClient, prompt: str) -> str:
        response = await client.post(
            OPENAI_CHAT_URL,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_MESSAGE},
                    {"role": "user", "content": prompt},
                ],
                "response_format": {"type": "json_object"},
                "temperature": 0.3,
            },
        )
        data = self._json_or_raise(response, "OpenAI")

        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            text = None
        if not text:
            raise ContentAnalysisError("No response from OpenAI")
        return text

    async def _call_anthropic(self, client: httpx.AsyncClient, prompt: str) -> str:
        response = await client.post(
            ANTHROPIC_MESSAGES_URL,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "Content-Type": "application/json",
            },
            json={
                "model": self.model,
                "max_tokens": 4000,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        data = self._json_or_raise(response, "Anthropic")

        blocks = data.get("content") if isinstance(data, dict) else None
        if not blocks or not isinstance(blocks, list) or blocks[0].get("type") != "text":
            raise ContentAnalysisError("Unexpected response type from Anthropic")
        return blocks[0].get("text", "")

    @staticmethod
    def _json_or_raise(response: httpx.Response, provider_name: str) -> Dict[str, Any]:
        if not response.is_success:
            raise ContentAnalysisError(
                f"{provider_name} API error ({response.status_code}): {response.text[:500]}"
            )
        try:
            return response.json()
        except ValueError:
            raise ContentAnalysisError(f"{provider_name} returned a non-JSON body")


def get_content_analyzer() -> ContentAnalyzer:
    """
    Factory function to get the analyzer for settings.AI_PROVIDER.

    Returns:
        Configured ContentAnalyzer
    """
    return ContentAnalyzer()
