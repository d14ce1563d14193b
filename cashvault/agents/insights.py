"""
Financial Insights Agent

Writes the three short tips at the bottom of the monthly report.

BOUNDARIES:
- The LLM sees only the month's aggregated totals, never raw transactions
- The LLM output is used verbatim only if it parses as a JSON list of strings
- Any failure falls back to fixed, generic insights; a report is never
  blocked on the LLM
"""

import json
import re
from typing import Optional

import google.generativeai as genai
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from cashvault.config import GeminiSettings, get_settings
from cashvault.core.reports import FALLBACK_INSIGHTS
from cashvault.models.ledger import MonthlyStats


_CODE_FENCE = re.compile(r"```(?:json)?\n?")


def parse_insights(text: str) -> Optional[list[str]]:
    """Parse the model's reply into a list of insights, or None if unusable."""
    cleaned = _CODE_FENCE.sub("", text or "").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, list) or not data:
        return None
    if not all(isinstance(item, str) and item.strip() for item in data):
        return None
    return [item.strip() for item in data]


class FinancialInsightsAgent:
    """
    Generates monthly insights with Gemini.

    Without an API key the agent is inert and always returns the
    fallback insights.
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model=None,
    ):
        self._settings = settings or get_settings().gemini
        self._logger = structlog.get_logger(__name__)
        self._model = model
        if self._model is None and self._settings.api_key:
            self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    @property
    def is_configured(self) -> bool:
        return self._model is not None

    def build_prompt(self, stats: MonthlyStats, month: str) -> str:
        categories = ", ".join(
            f"{category}: ${amount}" for category, amount in stats.by_category.items()
        ) or "none"

        return f"""Analyze this financial data and provide 3 concise, actionable insights.
Focus on spending patterns and practical advice.
Keep it friendly and conversational.

Financial Data for {month}:
- Total Income: ${stats.total_income}
- Total Expenses: ${stats.total_expenses}
- Net Income: ${stats.net_income}
- Expense Categories: {categories}

Format the response as a JSON array of strings, like this:
["insight 1", "insight 2", "insight 3"]"""

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _generate(self, prompt: str) -> str:
        response = await self._model.generate_content_async(prompt)
        return response.text

    async def generate_insights(self, stats: MonthlyStats, month: str) -> list[str]:
        """Return insights for the month; never raises."""
        if not self.is_configured:
            return list(FALLBACK_INSIGHTS)

        try:
            text = await self._generate(self.build_prompt(stats, month))
        except Exception as e:
            self._logger.warning("insights_generation_failed", month=month, error=str(e))
            return list(FALLBACK_INSIGHTS)

        insights = parse_insights(text)
        if insights is None:
            self._logger.warning("insights_unparseable", month=month)
            return list(FALLBACK_INSIGHTS)
        return insights
