import math
import re
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import structlog

from casegen.core.exceptions import (
    GenerationError,
    GenerationNotFoundError,
    InputValidationError,
    IssueSourceError,
)
from casegen.models.schemas import (
    ContentVersion,
    GenerateTestCasesResponse,
    Generation,
    GenerationCreate,
    GenerationMode,
    GenerationStatus,
    GenerationUpdate,
    ImageDescriptor,
    Issue,
    PreflightResponse,
    Project,
    TestCaseRecord,
)
from casegen.repositories.interfaces.generation_repository import IGenerationRepository
from casegen.repositories.interfaces.issue_source import IIssueSource
from casegen.repositories.interfaces.project_repository import IProjectRepository
from casegen.services.generation_client import GenerationClient
from casegen.services.image_session_store import ImageSessionStore
from casegen.services.pricing import DEFAULT_MODEL, calculate_cost
from casegen.services.request_builder import RequestBuilder
from casegen.services.result_parser import parse_test_cases
from casegen.services.version_ledger import record_edit

logger = structlog.get_logger()

# Rough preflight heuristics: ~4 characters per token, ~200 tokens per image
CHARS_PER_TOKEN = 4
TOKENS_PER_IMAGE = 200
ASSUMED_OUTPUT_TOKENS = 8000

_PROJECT_KEY = re.compile(r"^([A-Z0-9]+)-", re.IGNORECASE)


def extract_project_key(issue_key: Optional[str]) -> Optional[str]:
    if not issue_key or not isinstance(issue_key, str):
        return None
    match = _PROJECT_KEY.match(issue_key.strip())
    return match.group(1).upper() if match else None


def build_issue_context(issue: Issue) -> str:
    context = f"Title: {issue.summary}\n\nDescription:\n{issue.description}\n\n"
    if issue.acceptance_criteria:
        context += f"Acceptance Criteria:\n{issue.acceptance_criteria}"
    return context


class GenerationService:
    """Business logic for generating, editing and exporting test case documents"""

    def __init__(
        self,
        generation_repository: IGenerationRepository,
        project_repository: IProjectRepository,
        issue_source: IIssueSource,
        generation_client: GenerationClient,
        session_store: ImageSessionStore,
        request_builder: Optional[RequestBuilder] = None,
    ):
        self.generation_repository = generation_repository
        self.project_repository = project_repository
        self.issue_source = issue_source
        self.generation_client = generation_client
        self.session_store = session_store
        self.request_builder = request_builder or RequestBuilder()

    @staticmethod
    def _normalize_issue_key(issue_key: Optional[str]) -> str:
        key = (issue_key or "").strip()
        if not key:
            raise InputValidationError("issue_key required")
        return key

    async def _fetch_issue(self, issue_key: str) -> Issue:
        lookup = await self.issue_source.get_issue(issue_key)
        if not lookup.success or lookup.issue is None:
            raise IssueSourceError(lookup.error or "Issue not found in JIRA", status_code=lookup.status_code or 404)
        return lookup.issue

    async def preflight(self, issue_key: str) -> PreflightResponse:
        """Estimate size and cost of a generation before running it"""
        issue_key = self._normalize_issue_key(issue_key)
        issue = await self._fetch_issue(issue_key)

        image_attachments = len(issue.image_attachments)
        context_text = f"{issue.summary} {issue.description}"
        estimated_tokens = math.ceil(len(context_text) / CHARS_PER_TOKEN) + image_attachments * TOKENS_PER_IMAGE
        estimated_cost = calculate_cost(DEFAULT_MODEL, estimated_tokens, ASSUMED_OUTPUT_TOKENS)

        return PreflightResponse(
            issue_key=issue_key,
            title=issue.summary or "N/A",
            description=issue.description,
            attachments=len(issue.attachments),
            image_attachments=image_attachments,
            estimated_tokens=estimated_tokens,
            estimated_cost=f"{estimated_cost.quantize(Decimal('0.0001'))}",
        )

    async def _resolve_project(self, issue_key: str, owner: str) -> Optional[Project]:
        project_key = extract_project_key(issue_key)
        if not project_key:
            return None
        try:
            project = await self.project_repository.find_or_create(project_key, owner)
            logger.info("Associated generation with project", project_key=project_key)
            return project
        except Exception as e:
            logger.warning("Failed to find/create project, continuing without project",
                           project_key=project_key, error=str(e))
            return None

    def _resolve_images(self, image_session_id: Optional[str], owner: str) -> List[ImageDescriptor]:
        if not image_session_id:
            return []
        session = self.session_store.get_session(image_session_id, owner)
        if session is None:
            # Expired, foreign or already consumed: generate from text only
            logger.warning("Image session not available, generating without images",
                           session_id=image_session_id, owner=owner)
            return []
        return list(session.images)

    async def _fail(self, generation_id: int, error: str) -> None:
        await self.generation_repository.update(generation_id, GenerationUpdate(
            status=GenerationStatus.FAILED,
            error=error,
            completed_at=datetime.now(timezone.utc),
        ))

    async def generate_test_cases(
        self,
        issue_key: str,
        owner: str,
        auto_mode: bool = False,
        image_session_id: Optional[str] = None,
    ) -> GenerateTestCasesResponse:
        issue_key = self._normalize_issue_key(issue_key)
        mode = GenerationMode.AUTO if auto_mode else GenerationMode.MANUAL

        project = await self._resolve_project(issue_key, owner)
        generation = await self.generation_repository.create(GenerationCreate(
            issue_key=issue_key,
            email=owner,
            project_id=project.id if project else None,
            mode=mode,
            status=GenerationStatus.RUNNING,
            started_at=datetime.now(timezone.utc),
        ))
        if project:
            total = await self.generation_repository.count_by_project(project.id)
            await self.project_repository.set_total_generations(project.id, total)

        try:
            return await self._run_generation(generation, mode, image_session_id, owner)
        except (IssueSourceError, GenerationError):
            raise
        except Exception as e:
            logger.error("Generation crashed", issue_key=issue_key, generation_id=generation.id,
                         error=str(e), exc_info=True)
            await self._fail(generation.id, f"Generation failed: {e}")
            raise

    async def _run_generation(
        self,
        generation: Generation,
        mode: GenerationMode,
        image_session_id: Optional[str],
        owner: str,
    ) -> GenerateTestCasesResponse:
        issue_key = generation.issue_key
        start_time = time.monotonic()
        try:
            issue = await self._fetch_issue(issue_key)
        except IssueSourceError as e:
            await self._fail(generation.id, str(e))
            raise

        images = self._resolve_images(image_session_id, owner)
        payload = await self.request_builder.build_request(issue_key, build_issue_context(issue), mode, images)

        logger.info("Generating test cases with OpenAI", issue_key=issue_key, mode=mode.value,
                    generation_id=generation.id, images=payload.image_count)
        try:
            result = await self.generation_client.generate(payload)
        except GenerationError as e:
            logger.error("OpenAI generation failed", issue_key=issue_key, generation_id=generation.id,
                         attempts=e.attempts, error=str(e))
            await self._fail(generation.id, f"OpenAI generation failed: {e}")
            raise

        content = result.content
        if not content.startswith("#"):
            content = f"# Test Cases for {issue_key}: {issue.summary or 'Untitled'}\n\n{content}"

        generation_time_seconds = round(time.monotonic() - start_time, 2)
        filename = f"{issue_key}_testcases_{generation.id}.md"
        await self.generation_repository.update(generation.id, GenerationUpdate(
            status=GenerationStatus.COMPLETED,
            completed_at=datetime.now(timezone.utc),
            generation_time_seconds=generation_time_seconds,
            cost=result.cost,
            token_usage=result.token_usage,
            content=content,
            filename=filename,
            versions=[],
            current_version=1,
        ))

        if image_session_id and images:
            # A session is single use; its files are not needed any more
            self.session_store.cleanup_session(image_session_id)

        logger.info("Generation completed", issue_key=issue_key, generation_id=generation.id,
                    seconds=generation_time_seconds, cost=str(result.cost))
        return GenerateTestCasesResponse(
            generation_id=generation.id,
            issue_key=issue_key,
            filename=filename,
            content=content,
            generation_time_seconds=generation_time_seconds,
            cost=result.cost,
            token_usage=result.token_usage,
            images_used=payload.image_count,
        )

    async def get_generation(self, generation_id: int, owner: str) -> Generation:
        generation = await self.generation_repository.get_by_id(generation_id)
        if generation is None or generation.email != owner:
            raise GenerationNotFoundError(f"Generation {generation_id} not found")
        return generation

    async def list_generations(self, owner: str, skip: int = 0, limit: int = 100) -> List[Generation]:
        return await self.generation_repository.list_by_email(owner, skip=skip, limit=limit)

    async def edit_content(self, generation_id: int, owner: str, content: str, notes: Optional[str] = None) -> Generation:
        generation = await self.get_generation(generation_id, owner)
        if generation.status != GenerationStatus.COMPLETED or generation.content is None:
            raise InputValidationError("Only completed generations can be edited")

        updated = record_edit(generation, content, owner, notes=notes)
        if updated is generation:
            return generation
        saved = await self.generation_repository.update(generation_id, GenerationUpdate(
            content=updated.content,
            versions=updated.versions,
            current_version=updated.current_version,
        ))
        return saved or updated

    async def list_versions(self, generation_id: int, owner: str) -> List[ContentVersion]:
        generation = await self.get_generation(generation_id, owner)
        return generation.versions

    async def export_rows(self, generation_id: int, owner: str) -> List[TestCaseRecord]:
        generation = await self.get_generation(generation_id, owner)
        return parse_test_cases(generation.content or "")
