"""
Agent reputation as presented to users.
"""
import logging
from typing import Any, Dict, Optional

from .gateway import ChainGateway

AGENT_EXPLORER_BASE = "https://8004scan.io/agent"


class ReputationService:
    """Formats the agent's on-chain reputation summary"""

    def __init__(self, gateway: ChainGateway, logger: Optional[logging.Logger] = None):
        self.gateway = gateway
        self.logger = logger or logging.getLogger(__name__)

    def get_reputation(self, agent_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Current reputation of the platform agent.

        Returns:
            Dictionary with agent_id, score, total_feedback, rating ("x/5"),
            explorer_url and the source the numbers came from
        """
        reputation = self.gateway.get_agent_reputation(agent_id)
        self.logger.debug(f"Reputation for agent {reputation.agent_id} from {reputation.source}")
        return {
            "agent_id": reputation.agent_id,
            "score": reputation.average_rating,
            "total_feedback": reputation.feedback_count,
            "rating": f"{reputation.average_rating}/5",
            "explorer_url": f"{AGENT_EXPLORER_BASE}/{reputation.agent_id}",
            "source": reputation.source,
        }

    def meets_minimum_reputation(self, min_score: int = 0, agent_id: Optional[int] = None) -> bool:
        """Check if the agent's average rating is at least `min_score`"""
        return self.gateway.get_agent_reputation(agent_id).average_rating >= min_score
