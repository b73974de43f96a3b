import pytest

import agentboard.persistence as persistence
from agentboard import AgentboardConfig, Coordinator, TemplateRegistry, WorkflowTemplate
from agentboard.persistence import (
    InMemoryCoordinationRepository,
    SQLiteCoordinationRepository,
)
from agentboard.templates import TaskTemplate

TENANT = "test-tenant"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    """Keep config files, env vars and the cached repository out of tests."""
    monkeypatch.setenv("AGENTBOARD_CONFIG", str(tmp_path / "missing-config.yaml"))
    monkeypatch.delenv("AGENTBOARD_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("AGENTBOARD_TENANT_ID", raising=False)
    monkeypatch.setattr(persistence, "_repository_instance", None)


@pytest.fixture(params=["inmemory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "inmemory":
        return InMemoryCoordinationRepository()
    return SQLiteCoordinationRepository(tmp_path / "coordination.db")


@pytest.fixture
def templates():
    return TemplateRegistry(
        {
            "fan-in": WorkflowTemplate(
                tasks=[
                    TaskTemplate(agent_id="agent-a", task_type="build"),
                    TaskTemplate(agent_id="agent-b", task_type="lint"),
                    TaskTemplate(
                        agent_id="agent-c",
                        task_type="package",
                        dependencies=["agent-a", "agent-b"],
                    ),
                ]
            ),
            "chain": WorkflowTemplate(
                tasks=[
                    TaskTemplate(agent_id="agent-a", task_type="build"),
                    TaskTemplate(
                        agent_id="agent-b", task_type="publish", dependencies=["agent-a"]
                    ),
                ]
            ),
        }
    )


@pytest.fixture
def coordinator(repository, templates):
    return Coordinator(
        repository,
        templates=templates,
        config=AgentboardConfig(tenant_id=TENANT, polling_interval=0.01),
    )
