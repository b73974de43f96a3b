"""Registry of the agents a coordinator dispatches to."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional

from .base import BaseAgent, CallableAgent, TaskCallable

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Maps agent ids to agents.

    A registry is passed to the coordinator explicitly; several coordinators
    may each hold their own.
    """

    def __init__(self, agents: Optional[List[BaseAgent]] = None) -> None:
        self._agents: Dict[str, BaseAgent] = {}
        for agent in agents or []:
            self.register_agent(agent)

    def register_agent(self, agent: BaseAgent) -> BaseAgent:
        if agent.agent_id in self._agents and self._agents[agent.agent_id] is not agent:
            logger.warning(f"Replacing registered agent {agent.agent_id}")
        self._agents[agent.agent_id] = agent
        return agent

    def register(self, agent_id: str, entry_point: TaskCallable, **kwargs: Any) -> BaseAgent:
        """Register a plain callable as the execution entry point of ``agent_id``."""
        return self.register_agent(CallableAgent(agent_id, entry_point, **kwargs))

    def unregister(self, agent_id: str) -> Optional[BaseAgent]:
        return self._agents.pop(agent_id, None)

    def get(self, agent_id: str) -> Optional[BaseAgent]:
        return self._agents.get(agent_id)

    def agent_ids(self) -> List[str]:
        return sorted(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __iter__(self) -> Iterator[BaseAgent]:
        return iter(list(self._agents.values()))

    def __len__(self) -> int:
        return len(self._agents)
