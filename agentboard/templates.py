"""Workflow templates: the task sets instantiated by ``start_workflow``."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field

from .errors import UnknownWorkflowTypeError

logger = logging.getLogger(__name__)


class TaskTemplate(BaseModel):
    """One task to create when a workflow starts."""

    agent_id: str
    task_type: str
    task_data: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)


class WorkflowTemplate(BaseModel):
    """Named set of tasks making up a workflow."""

    description: Optional[str] = None
    tasks: List[TaskTemplate] = Field(default_factory=list)


BUILTIN_TEMPLATES: Dict[str, WorkflowTemplate] = {
    "secure-deployment": WorkflowTemplate(
        description="Scan, test and cost-check in parallel, then deploy",
        tasks=[
            TaskTemplate(agent_id="security-scanner", task_type="security_scan"),
            TaskTemplate(agent_id="test-runner", task_type="run_tests"),
            TaskTemplate(agent_id="cost-analyzer", task_type="cost_analysis"),
            TaskTemplate(
                agent_id="deployment-agent",
                task_type="deploy",
                dependencies=["security-scanner", "test-runner", "cost-analyzer"],
            ),
        ],
    ),
    "quality-check": WorkflowTemplate(
        description="Independent standards, test and security checks",
        tasks=[
            TaskTemplate(agent_id="code-generator", task_type="validate_standards"),
            TaskTemplate(agent_id="test-runner", task_type="run_quality_tests"),
            TaskTemplate(agent_id="security-scanner", task_type="quality_security_scan"),
        ],
    ),
}


class TemplateRegistry:
    """Lookup of workflow templates keyed by workflow type.

    Unknown types resolve to an empty template unless ``strict`` is set, in
    which case :class:`UnknownWorkflowTypeError` is raised.
    """

    def __init__(
        self,
        templates: Optional[Mapping[str, WorkflowTemplate]] = None,
        *,
        include_builtin: bool = True,
        strict: bool = False,
    ) -> None:
        self._templates: Dict[str, WorkflowTemplate] = {}
        if include_builtin:
            self._templates.update(BUILTIN_TEMPLATES)
        if templates:
            self._templates.update(templates)
        self.strict = strict

    def register(self, workflow_type: str, template: WorkflowTemplate | dict) -> None:
        if isinstance(template, dict):
            template = WorkflowTemplate.model_validate(template)
        self._templates[workflow_type] = template

    def get(self, workflow_type: str) -> WorkflowTemplate:
        template = self._templates.get(workflow_type)
        if template is not None:
            return template
        if self.strict:
            raise UnknownWorkflowTypeError(workflow_type)
        logger.warning(f"No template for workflow type {workflow_type}; using an empty task set")
        return WorkflowTemplate()

    def names(self) -> Iterable[str]:
        return sorted(self._templates)

    def __contains__(self, workflow_type: object) -> bool:
        return workflow_type in self._templates
