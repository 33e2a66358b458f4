from typing import Dict, List, Optional
import structlog

from aurakai.domain.models.agent_state import AgentRequest, AgentResponse, AgentType
from aurakai.domain.orchestration.subagent.agent import Agent

logger = structlog.get_logger(__name__)


class AgentRegistry:
    """Registry of agents keyed by identity"""

    def __init__(self):
        self.agents: Dict[str, Agent] = {}
        self.agent_types: Dict[AgentType, List[str]] = {}

    def register(self, agent: Agent) -> None:
        """Register an agent, replacing any agent with the same name"""

        if agent.name in self.agents:
            self.unregister(agent.name)

        self.agents[agent.name] = agent
        self.agent_types.setdefault(agent.type, []).append(agent.name)
        logger.info("Agent registered", agent_name=agent.name, agent_type=agent.type.value)

    def unregister(self, name: str) -> bool:
        agent = self.agents.pop(name, None)
        if agent is None:
            return False
        self.agent_types[agent.type].remove(name)
        return True

    def get(self, name: str) -> Optional[Agent]:
        return self.agents.get(name)

    def list_agents(self, agent_type: Optional[AgentType] = None) -> List[Agent]:
        """Get registered agents, optionally of one type"""

        if agent_type is None:
            return list(self.agents.values())
        names = self.agent_types.get(agent_type, [])
        return [self.agents[name] for name in names if name in self.agents]

    def find_by_capability(self, capability: str) -> List[Agent]:
        return [
            agent for agent in self.agents.values()
            if capability in agent.descriptor.capabilities
        ]

    async def dispatch(self, name: str, request: AgentRequest) -> AgentResponse:
        """Route a request to the agent registered under ``name``"""

        agent = self.agents.get(name)
        if agent is None:
            raise KeyError(f"Unknown agent: {name}")
        return await agent.handle(request)

    def __contains__(self, name: str) -> bool:
        return name in self.agents

    def __len__(self) -> int:
        return len(self.agents)
