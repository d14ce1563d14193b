"""AI agents package."""

from cashvault.agents.insights import FinancialInsightsAgent, parse_insights

__all__ = ["FinancialInsightsAgent", "parse_insights"]
