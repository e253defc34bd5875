import re
from typing import Any, Dict, List, Optional

import httpx
import structlog

from casegen.config.settings import settings
from casegen.models.schemas import Issue, IssueAttachment, IssueLookup
from casegen.repositories.interfaces.issue_source import IIssueSource

logger = structlog.get_logger()

# Block-level ADF nodes that start a new line when flattened
_BLOCK_NODES = {"paragraph", "heading", "listItem", "blockquote", "codeBlock", "rule", "tableRow"}


def extract_text_from_adf(node: Any) -> str:
    """Flatten Atlassian Document Format (or plain strings) into text."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node

    lines: List[str] = []
    current: List[str] = []

    def flush() -> None:
        line = "".join(current).strip()
        if line:
            lines.append(line)
        current.clear()

    def walk(n: Any) -> None:
        if isinstance(n, list):
            for item in n:
                walk(item)
            return
        if not isinstance(n, dict):
            return
        node_type = n.get("type")
        if node_type == "text":
            current.append(n.get("text", ""))
        elif node_type == "hardBreak":
            flush()
        elif node_type == "mention":
            current.append(n.get("attrs", {}).get("text", ""))
        if "content" in n:
            if node_type == "listItem":
                current.append("- ")
            walk(n["content"])
        if node_type in _BLOCK_NODES:
            flush()

    walk(node.get("content", []) if isinstance(node, dict) and node.get("type") == "doc" else node)
    flush()
    return "\n".join(lines)


def split_acceptance_criteria(description: str) -> Dict[str, str]:
    """Split an 'Acceptance Criteria' section off the end of a description."""
    parts = re.split(r"Acceptance Criteria\s*:?\s*\n+", description, maxsplit=1, flags=re.IGNORECASE)
    body = parts[0].strip()
    criteria = parts[1] if len(parts) > 1 else ""
    # Jira image/file markup and smart links are noise for the model
    criteria = re.sub(r"!\S+?\.(jpg|png|jpeg|gif)[^!]*!", "", criteria, flags=re.IGNORECASE)
    criteria = re.sub(r"\[[^\]]*?\|[^\]]*?\]", "", criteria)
    criteria = "\n".join(line for line in criteria.splitlines() if line.strip())
    return {"description": body, "acceptance_criteria": criteria.strip()}


class AtlassianJiraService(IIssueSource):
    """Atlassian JIRA Cloud implementation of the issue source"""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.base_url = (settings.jira_base_url or "").rstrip("/")
        self.username = settings.jira_username
        self.api_token = settings.jira_api_token
        self.auth = (self.username, self.api_token) if self.username and self.api_token else None
        self.acceptance_criteria_fields = list(settings.jira_acceptance_criteria_fields)
        self._client = client

    def is_configured(self) -> bool:
        """Check if JIRA service is properly configured"""
        return bool(self.base_url and self.username and self.api_token)

    async def _fetch(self, issue_key: str) -> httpx.Response:
        url = f"{self.base_url}/rest/api/3/issue/{issue_key}"
        headers = {"Accept": "application/json"}
        if self._client is not None:
            return await self._client.get(url, auth=self.auth, headers=headers)
        async with httpx.AsyncClient(timeout=settings.jira_timeout_seconds) as client:
            return await client.get(url, auth=self.auth, headers=headers)

    async def get_issue(self, issue_key: str) -> IssueLookup:
        if not self.is_configured():
            logger.warning("JIRA service not configured")
            return IssueLookup(success=False, status_code=503,
                               error="JIRA service not configured. Set JIRA_BASE_URL, JIRA_USERNAME and JIRA_API_TOKEN")
        try:
            response = await self._fetch(issue_key)
        except httpx.HTTPError as e:
            logger.error("Error getting JIRA issue", issue_key=issue_key, error=str(e))
            return IssueLookup(success=False, status_code=502, error=f"Failed to reach JIRA: {e}")

        if response.status_code == 200:
            return IssueLookup(success=True, issue=self._to_issue(issue_key, response.json()))

        if response.status_code == 401:
            error, status_code = "JIRA authentication failed", 401
        elif response.status_code == 403:
            error, status_code = f"Access to JIRA issue {issue_key} is forbidden", 403
        elif response.status_code == 404:
            error, status_code = f"JIRA issue {issue_key} not found", 404
        else:
            error, status_code = f"JIRA returned status {response.status_code}", 502
        logger.error("Failed to get JIRA issue", issue_key=issue_key, status_code=response.status_code)
        return IssueLookup(success=False, status_code=status_code, error=error)

    def _to_issue(self, issue_key: str, issue_data: Dict[str, Any]) -> Issue:
        fields = issue_data.get("fields") or {}
        description = extract_text_from_adf(fields.get("description"))

        acceptance_criteria = ""
        for field_id in self.acceptance_criteria_fields:
            if fields.get(field_id):
                acceptance_criteria = extract_text_from_adf(fields[field_id]).strip()
                if acceptance_criteria:
                    break
        if not acceptance_criteria:
            split = split_acceptance_criteria(description)
            description, acceptance_criteria = split["description"], split["acceptance_criteria"]

        attachments = [
            IssueAttachment(
                filename=att.get("filename"),
                mime_type=att.get("mimeType"),
                url=att.get("content"),
            )
            for att in fields.get("attachment") or []
        ]
        return Issue(
            key=issue_data.get("key") or issue_key,
            summary=fields.get("summary") or "",
            description=description,
            acceptance_criteria=acceptance_criteria,
            attachments=attachments,
        )
