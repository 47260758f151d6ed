# geolook/llm_client.py
import os
import aiohttp
import logging

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an expert in slope stability and weather-station monitoring."


class LLMClient:
    """Optional plain-language summaries via an OpenAI-compatible chat endpoint."""

    def __init__(self):
        self.url = os.getenv("LLM_API_URL")
        self.api_key = os.getenv("LLM_API_KEY")
        self.model = os.getenv("LLM_MODEL", "gpt-4o-mini")
        if not self.enabled:
            logger.warning("LLM_API_KEY or LLM_API_URL not set. LLM features will be disabled.")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.url)

    async def _chat(self, prompt: str, temperature: float, max_tokens: int, timeout: float) -> str:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json"
                },
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt}
                    ],
                    "temperature": temperature,
                    "max_tokens": max_tokens
                },
                timeout=aiohttp.ClientTimeout(total=timeout)
            ) as resp:
                if resp.status != 200:
                    logger.error(f"LLM API error: {resp.status}")
                    return ""
                data = await resp.json()
                return data["choices"][0]["message"]["content"].strip()

    @staticmethod
    def alert_prompt(alert: dict) -> str:
        return f"""
Analyse the following monitoring-station alert and summarise it briefly:

- Sensor: {alert['sensorType']}
- Level: {alert['level']}
- Current value: {alert['value']}
- Rule: {alert.get('condition', 'N/A')} {alert.get('threshold', 'N/A')}
- Message: {alert['message']}

Explain the situation and the recommended action in 1-2 sentences.
"""

    @staticmethod
    def range_prompt(summary: dict) -> str:
        """summary is RangeResult.to_dict(): stats per sensor plus dateRange."""
        date_range = summary.get("dateRange", {})
        lines = [
            "Below is an aggregated summary of station sensor data. Write a 3-6 sentence "
            "operator report from it.",
            f"Period: {date_range.get('from', 'N/A')} ~ {date_range.get('to', 'N/A')}",
            f"Records: {summary.get('totalRecords', 0)} (interval {summary.get('intervalMinutes')} min)",
            "Highlight averages, extremes and anything close to unsafe levels; suggest 1-3 actions.",
            "\n--- Data summary ---",
        ]
        for sensor, stats in summary.get("stats", {}).items():
            lines.append(f" - {sensor}: mean={stats.get('average')}, min={stats.get('min')}, max={stats.get('max')}")
        return "\n".join(lines)

    async def generate_alert_summary(self, alert: dict) -> str:
        if not self.enabled:
            return ""
        try:
            return await self._chat(self.alert_prompt(alert), temperature=0.3, max_tokens=200, timeout=10)
        except Exception as e:
            logger.error(f"LLM generation failed: {e}")
            return ""

    async def generate_range_report(self, summary: dict) -> str:
        if not self.enabled:
            return ""
        try:
            return await self._chat(self.range_prompt(summary), temperature=0.2, max_tokens=400, timeout=20)
        except Exception as e:
            logger.error(f"LLM report generation failed: {e}")
            return ""
