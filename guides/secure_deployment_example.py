"""Secure deployment workflow example using agentboard."""

import asyncio
import logging

from agentboard import BaseAgent, Coordinator, WorkflowStatus


class SecurityScanner(BaseAgent):
    def __init__(self):
        super().__init__("security-scanner", agent_type="scanner", capabilities=["sast"])

    async def perform_task(self, task_type, task_data, task):
        context = await self.get_workflow_context(task.workflow_id)
        await asyncio.sleep(0.2)
        findings = {"branch": context.get("branch"), "critical": 0, "warnings": 2}
        await self.store_workflow_data(task.workflow_id, "scan-report", findings)
        return findings


class TestRunner(BaseAgent):
    def __init__(self):
        super().__init__("test-runner", agent_type="tests", capabilities=["pytest"])

    async def perform_task(self, task_type, task_data, task):
        await asyncio.sleep(0.1)
        return {"passed": 42, "failed": 0}


class CostAnalyzer(BaseAgent):
    def __init__(self):
        super().__init__("cost-analyzer", agent_type="finops")

    def perform_task(self, task_type, task_data, task):
        # plain functions work too
        return {"monthly_delta_usd": 12.5}


class DeploymentAgent(BaseAgent):
    def __init__(self):
        super().__init__("deployment-agent", agent_type="deployer")

    async def perform_task(self, task_type, task_data, task):
        report = await self.get_workflow_data(task.workflow_id, "scan-report")
        if report["critical"]:
            raise RuntimeError("Refusing to deploy with critical findings")
        checks = await self.query_agent_results(task.workflow_id)
        print("Checks before deploy:", [(t.agent_id, t.status.value) for t in checks])
        return {"deployed": True, "environment": "staging"}


async def main():
    logging.basicConfig(level=logging.INFO)
    # Uses AGENTBOARD_DATABASE_URL when set, in-memory storage otherwise
    coordinator = Coordinator(polling_interval=0.1)
    for agent in (SecurityScanner(), TestRunner(), CostAnalyzer(), DeploymentAgent()):
        coordinator.register_agent(agent)

    async with coordinator:
        workflow_id = await coordinator.start_workflow(
            "secure-deployment", {"branch": "main"}
        )
        while True:
            snapshot = await coordinator.get_workflow_status(workflow_id)
            if snapshot.workflow.status is not WorkflowStatus.RUNNING:
                break
            await asyncio.sleep(0.1)

    print("Workflow finished:", snapshot.workflow.status.value)
    for task in snapshot.tasks:
        print(f"  {task.agent_id}/{task.task_type}: {task.status.value}")


if __name__ == "__main__":
    asyncio.run(main())
