"""In-memory doubles for the asyncpg repositories and the HubSpot client."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from hubdeploy.auth.context import ROLE_PERMISSIONS, AuthContext
from hubdeploy.errors import ConflictError
from hubdeploy.models.deployments import Deployment, DeploymentLog
from hubdeploy.models.mappings import MappingHistoryEntry
from hubdeploy.models.templates import Template
from hubdeploy.models.units import CreatedEntity
from hubdeploy.repositories.deployments import LogEntry
from hubdeploy.services.hubspot import RemoteResult, hash_api_key
from hubdeploy.services.ledger import DeploymentLedger
from hubdeploy.services.mapping_store import MappingStore
from hubdeploy.services.orchestrator import Orchestrator
from hubdeploy.services.templates import TemplateCatalogue

API_KEY = "pat-na1-test-key"


class Clock:
    """Strictly increasing timestamps so ordering by created_at is stable."""

    def __init__(self) -> None:
        self._current = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        self._current += timedelta(milliseconds=1)
        return self._current


class FakeDeploymentRepository:
    def __init__(self, clock: Clock) -> None:
        self.clock = clock
        self.deployments: dict[str, Deployment] = {}
        self.logs: list[DeploymentLog] = []

    def _save(self, deployment_id: str, **changes: Any) -> Deployment:
        updated = self.deployments[deployment_id].model_copy(update={**changes, "updated_at": self.clock.now()})
        self.deployments[deployment_id] = updated
        return updated

    def _status(self, deployment_id: str) -> str | None:
        deployment = self.deployments.get(deployment_id)
        return deployment.status if deployment else None

    async def create(self, *, client_name, template_id, config, api_key_hash, total_steps) -> Deployment:
        deployment = Deployment.model_validate(
            {
                "id": str(uuid.uuid4()),
                "client_name": client_name,
                "template_id": template_id,
                "config": config,
                "status": "pending",
                "api_key_hash": api_key_hash,
                "deployment_progress": {"total_steps": total_steps, "completed_steps": 0, "current_step": None},
                "created_at": self.clock.now(),
                "updated_at": self.clock.now(),
            }
        )
        self.deployments[deployment.id] = deployment
        return deployment

    async def get(self, deployment_id: str) -> Deployment | None:
        return self.deployments.get(deployment_id)

    async def list_deployments(self, *, status=None, client_name=None, template_id=None, limit=20, offset=0):
        rows = [
            deployment
            for deployment in self.deployments.values()
            if (status is None or deployment.status == status)
            and (client_name is None or client_name.lower() in deployment.client_name.lower())
            and (template_id is None or deployment.template_id == template_id)
        ]
        rows.sort(key=lambda deployment: deployment.created_at, reverse=True)
        return rows[offset : offset + limit]

    async def count_by_status(self, template_id: str | None = None) -> dict[str, int]:
        counts: dict[str, int] = {}
        for deployment in self.deployments.values():
            if template_id is None or deployment.template_id == template_id:
                counts[deployment.status] = counts.get(deployment.status, 0) + 1
        return counts

    async def mark_started(self, deployment_id, *, started_at, current_step):
        if self._status(deployment_id) != "pending":
            return None
        progress = self.deployments[deployment_id].deployment_progress.model_copy(
            update={"current_step": current_step}
        )
        return self._save(deployment_id, status="in_progress", started_at=started_at, deployment_progress=progress)

    async def mark_finished(self, deployment_id, *, status, completed_at, error_details):
        if self._status(deployment_id) != "in_progress":
            return None
        started_at = self.deployments[deployment_id].started_at
        return self._save(
            deployment_id,
            status=status,
            completed_at=completed_at,
            execution_time=int((completed_at - started_at).total_seconds() * 1000),
            error_details=error_details,
        )

    async def mark_rolled_back(self, deployment_id, *, error_details):
        if self._status(deployment_id) != "failed":
            return None
        return self._save(deployment_id, status="rolled_back", error_details=error_details)

    async def set_error_details(self, deployment_id, error_details):
        if deployment_id not in self.deployments:
            return None
        return self._save(deployment_id, error_details=error_details)

    async def request_cancel(self, deployment_id):
        if self._status(deployment_id) not in ("pending", "in_progress"):
            return None
        return self._save(deployment_id, cancel_requested=True)

    async def insert_log(self, deployment_id: str, entry: LogEntry) -> DeploymentLog:
        log = DeploymentLog(
            id=str(uuid.uuid4()),
            deployment_id=deployment_id,
            step=entry.step,
            status=entry.status,
            details=entry.details,
            error_message=entry.error_message,
            execution_time=entry.execution_time,
            hubspot_response=entry.hubspot_response,
            created_at=self.clock.now(),
        )
        self.logs.append(log)
        return log

    async def list_logs(self, deployment_id: str) -> list[DeploymentLog]:
        return [log for log in self.logs if log.deployment_id == deployment_id]

    async def record_unit_outcome(self, deployment_id, *, entry, entity, next_step):
        if self._status(deployment_id) != "in_progress":
            return None
        deployment = self.deployments[deployment_id]
        entities = list(deployment.created_entities)
        if entity is not None:
            next_index = max((existing.index for existing in entities), default=-1) + 1
            entities.append(CreatedEntity(index=next_index, **entity))
        progress = deployment.deployment_progress
        progress = progress.model_copy(
            update={
                "completed_steps": min(progress.completed_steps + 1, progress.total_steps),
                "current_step": next_step,
            }
        )
        updated = self._save(deployment_id, created_entities=entities, deployment_progress=progress)
        await self.insert_log(deployment_id, entry)
        return updated

    async def remove_created_entity(self, deployment_id, *, index, entry):
        if self._status(deployment_id) != "failed":
            return None
        entities = [entity for entity in self.deployments[deployment_id].created_entities if entity.index != index]
        updated = self._save(deployment_id, created_entities=entities)
        await self.insert_log(deployment_id, entry)
        return updated


class FakeTemplateRepository:
    def __init__(self, clock: Clock, deployments: FakeDeploymentRepository) -> None:
        self.clock = clock
        self.deployments = deployments
        self.templates: dict[str, Template] = {}

    def _name_taken(self, name: str, exclude: str | None = None) -> bool:
        return any(t.name == name and t.id != exclude for t in self.templates.values())

    async def create(self, *, name, description, industry, config, created_by) -> Template:
        if self._name_taken(name):
            raise ConflictError(f"Template named '{name}' already exists")
        now = self.clock.now()
        template = Template(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            industry=industry,
            config=config,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.templates[template.id] = template
        return template

    async def get(self, template_id: str) -> Template | None:
        return self.templates.get(template_id)

    async def list_templates(self, *, industry=None, is_active=None, limit=20, offset=0) -> list[Template]:
        rows = [
            template
            for template in self.templates.values()
            if (industry is None or template.industry == industry)
            and (is_active is None or template.is_active == is_active)
        ]
        rows.sort(key=lambda template: (-template.usage_count, template.name))
        return rows[offset : offset + limit]

    async def update(self, template_id, changes) -> Template | None:
        if template_id not in self.templates:
            return None
        if "name" in changes and self._name_taken(changes["name"], exclude=template_id):
            raise ConflictError(f"Template named '{changes['name']}' already exists")
        updated = self.templates[template_id].model_copy(update={**changes, "updated_at": self.clock.now()})
        self.templates[template_id] = updated
        return updated

    async def record_usage(self, template_id: str) -> None:
        template = self.templates.get(template_id)
        if template is not None:
            self.templates[template_id] = template.model_copy(
                update={"usage_count": template.usage_count + 1, "last_used": self.clock.now()}
            )

    async def delete(self, template_id: str) -> bool:
        if template_id not in self.templates:
            return False
        del self.templates[template_id]
        for deployment_id, deployment in self.deployments.deployments.items():
            if deployment.template_id == template_id:
                self.deployments.deployments[deployment_id] = deployment.model_copy(update={"template_id": None})
        return True


class FakeMappingRepository:
    def __init__(self, clock: Clock) -> None:
        self.clock = clock
        self.entries: dict[tuple[str, str, str], MappingHistoryEntry] = {}
        self.queries = 0

    async def upsert(
        self,
        *,
        source_field,
        hubspot_name,
        hubspot_type,
        field_type,
        object_type,
        group_name,
        options,
        confidence,
    ) -> MappingHistoryEntry:
        key = (source_field, hubspot_name, object_type)
        existing = self.entries.get(key)
        if existing is None:
            entry = MappingHistoryEntry(
                id=str(uuid.uuid4()),
                source_field=source_field,
                hubspot_name=hubspot_name,
                hubspot_type=hubspot_type,
                field_type=field_type,
                object_type=object_type,
                group_name=group_name,
                options=options,
                usage_count=1,
                last_used=self.clock.now(),
                confidence=confidence,
            )
        else:
            usage_count = existing.usage_count + 1
            blended = existing.confidence
            if confidence is not None:
                if existing.confidence is None:
                    blended = confidence
                else:
                    blended = (existing.confidence * existing.usage_count + confidence) / usage_count
            entry = existing.model_copy(
                update={
                    "hubspot_type": hubspot_type,
                    "field_type": field_type,
                    "group_name": group_name if group_name is not None else existing.group_name,
                    "options": options if options is not None else existing.options,
                    "usage_count": usage_count,
                    "last_used": self.clock.now(),
                    "confidence": blended,
                }
            )
        self.entries[key] = entry
        return entry

    async def iter_candidates(self, source_field, object_type):
        self.queries += 1
        rows = [
            entry
            for entry in self.entries.values()
            if entry.source_field == source_field and entry.object_type == object_type
        ]
        rows.sort(
            key=lambda entry: (
                entry.confidence is None,
                -(entry.confidence or 0.0),
                -entry.usage_count,
                -entry.last_used.timestamp(),
            )
        )
        for row in rows:
            yield row


class FakeCRM:
    """Records remote calls. Failures are keyed by unit id (apply) or remote id (delete)."""

    def __init__(self) -> None:
        self.applied: list[str] = []
        self.deleted: list[tuple[str, str, str | None]] = []
        self.apply_failures: dict[str, Exception] = {}
        self.delete_failures: dict[str, Exception] = {}
        self.existing: set[str] = set()
        self.on_apply = None
        self._counter = 0

    async def create_or_update(self, unit) -> RemoteResult:
        self.applied.append(unit.unit_id)
        if self.on_apply is not None:
            await self.on_apply(unit)
        failure = self.apply_failures.get(unit.unit_id)
        if failure is not None:
            raise failure
        self._counter += 1
        remote_id = getattr(unit.spec, "name", None) or f"remote-{self._counter}"
        return RemoteResult(remote_id=remote_id, raw={"id": remote_id})

    async def exists(self, unit) -> bool:
        return unit.unit_id in self.existing

    async def delete(self, remote_type: str, remote_id: str, object_type: str | None) -> None:
        self.deleted.append((remote_type, remote_id, object_type))
        failure = self.delete_failures.get(remote_id)
        if failure is not None:
            raise failure


def saas_starter_config() -> dict:
    return {
        "properties": {
            "contacts": [
                {
                    "name": "plan_tier",
                    "label": "Plan Tier",
                    "type": "enumeration",
                    "fieldType": "select",
                    "options": [
                        {"label": "Free", "value": "free"},
                        {"label": "Pro", "value": "pro"},
                    ],
                }
            ],
        },
        "pipelines": {
            "deals": [
                {
                    "label": "Sales Pipeline",
                    "displayOrder": 0,
                    "stages": [
                        {"label": "Qualified", "displayOrder": 0},
                        {"label": "Closed Won", "displayOrder": 1},
                    ],
                }
            ],
        },
        "lifecycleStages": {
            "stages": [{"name": "trial_user", "label": "Trial User", "displayOrder": 0}],
        },
    }


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def deployment_repo(clock) -> FakeDeploymentRepository:
    return FakeDeploymentRepository(clock)


@pytest.fixture
def template_repo(clock, deployment_repo) -> FakeTemplateRepository:
    return FakeTemplateRepository(clock, deployment_repo)


@pytest.fixture
def mapping_repo(clock) -> FakeMappingRepository:
    return FakeMappingRepository(clock)


@pytest.fixture
def ledger(deployment_repo) -> DeploymentLedger:
    return DeploymentLedger(deployment_repo)


@pytest.fixture
def catalogue(template_repo, deployment_repo) -> TemplateCatalogue:
    return TemplateCatalogue(template_repo, deployment_repo)


@pytest.fixture
def mapping_store(mapping_repo) -> MappingStore:
    return MappingStore(mapping_repo)


@pytest.fixture
def orchestrator(ledger, template_repo) -> Orchestrator:
    return Orchestrator(ledger, template_repo)


@pytest.fixture
def crm() -> FakeCRM:
    return FakeCRM()


@pytest.fixture
def api_key() -> str:
    return API_KEY


@pytest.fixture
def api_key_hash() -> str:
    return hash_api_key(API_KEY)


@pytest.fixture
def config() -> dict:
    return saas_starter_config()


@pytest_asyncio.fixture
async def client(deployment_repo, template_repo, mapping_repo, crm):
    """HTTPX async client against the app, with the fakes wired in."""
    from hubdeploy import deps
    from hubdeploy.auth.dependencies import get_current_auth
    from hubdeploy.main import app

    async def override_auth() -> AuthContext:
        return AuthContext(user_id="user-1", role="admin", permissions=ROLE_PERMISSIONS["admin"])

    app.dependency_overrides[get_current_auth] = override_auth
    app.dependency_overrides[deps.get_deployment_repository] = lambda: deployment_repo
    app.dependency_overrides[deps.get_template_repository] = lambda: template_repo
    app.dependency_overrides[deps.get_mapping_repository] = lambda: mapping_repo
    app.dependency_overrides[deps.get_crm_factory] = lambda: (lambda api_key: crm)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
