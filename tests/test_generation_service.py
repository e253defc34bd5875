import pytest

from casegen.core.exceptions import GenerationNotFoundError, InputValidationError, IssueSourceError
from casegen.models.database import ProjectModel
from casegen.models.schemas import GenerationStatus, Issue
from casegen.repositories.implementations.sql_generation_repository import SQLGenerationRepository
from casegen.repositories.implementations.sql_project_repository import SQLProjectRepository
from casegen.services.generation_service import GenerationService, build_issue_context, extract_project_key


@pytest.fixture
def service(db_session, issue_source, generation_client, session_store):
    return GenerationService(
        generation_repository=SQLGenerationRepository(db_session),
        project_repository=SQLProjectRepository(db_session),
        issue_source=issue_source,
        generation_client=generation_client,
        session_store=session_store,
    )


@pytest.mark.parametrize("issue_key,expected", [
    ("PROJ-123", "PROJ"),
    ("abc-1", "ABC"),
    (" QA2-9 ", "QA2"),
    ("nodash", None),
    ("", None),
    (None, None),
])
def test_extract_project_key(issue_key, expected):
    assert extract_project_key(issue_key) == expected


def test_issue_context_includes_criteria_only_when_present():
    with_criteria = build_issue_context(Issue(key="A-1", summary="S", description="D", acceptance_criteria="AC"))
    without = build_issue_context(Issue(key="A-1", summary="S", description="D"))

    assert with_criteria == "Title: S\n\nDescription:\nD\n\nAcceptance Criteria:\nAC"
    assert without == "Title: S\n\nDescription:\nD\n\n"


@pytest.mark.asyncio
async def test_generate_and_edit(service):
    response = await service.generate_test_cases("PROJ-1", owner="qa@example.com")

    generation = await service.get_generation(response.generation_id, "qa@example.com")
    assert generation.status == GenerationStatus.COMPLETED
    assert generation.project_id is not None

    edited = await service.edit_content(response.generation_id, "qa@example.com", "# New")
    assert edited.current_version == 2
    assert [v.version for v in await service.list_versions(response.generation_id, "qa@example.com")] == [1]


@pytest.mark.asyncio
async def test_issue_key_without_project_prefix_has_no_project(service, issue_source):
    issue_source.add(Issue(key="standalone", summary="No project"))

    response = await service.generate_test_cases("standalone", owner="qa@example.com")

    generation = await service.get_generation(response.generation_id, "qa@example.com")
    assert generation.project_id is None


@pytest.mark.asyncio
async def test_errors(service):
    with pytest.raises(InputValidationError):
        await service.generate_test_cases(" ", owner="qa@example.com")
    with pytest.raises(IssueSourceError) as exc_info:
        await service.preflight("MISSING-1")
    assert exc_info.value.status_code == 404
    with pytest.raises(GenerationNotFoundError):
        await service.get_generation(999, "qa@example.com")


@pytest.fixture
def existing_project(db_session):
    project = ProjectModel(project_key="PROJ", created_by="first@example.com", total_generations=0)
    db_session.add(project)
    db_session.commit()
    return project.id


@pytest.mark.asyncio
async def test_find_or_create_settles_a_lost_insert_race(db_session, existing_project, monkeypatch):
    real_lookup = SQLProjectRepository._get_model
    lookups = []

    def stale_first_lookup(self, project_key):
        # the first lookup misses the row another request just inserted
        lookups.append(project_key)
        return None if len(lookups) == 1 else real_lookup(self, project_key)

    monkeypatch.setattr(SQLProjectRepository, "_get_model", stale_first_lookup)

    project = await SQLProjectRepository(db_session).find_or_create("proj", "second@example.com")

    assert project.id == existing_project
    assert project.created_by == "first@example.com"
    assert len(lookups) == 2


@pytest.mark.asyncio
async def test_failed_project_insert_does_not_break_generation(service, existing_project, monkeypatch):
    monkeypatch.setattr(SQLProjectRepository, "_get_model", lambda self, project_key: None)

    response = await service.generate_test_cases("PROJ-1", owner="qa@example.com")

    generation = await service.get_generation(response.generation_id, "qa@example.com")
    assert generation.status == GenerationStatus.COMPLETED
    assert generation.project_id is None
