"""
Review Insights Agent
---------------------
Background job spawned after a row refresh:

  1. fetch recent review texts from every review source concurrently
  2. replace the stored texts per (property, platform)
  3. ask the LLM gateway for positive/negative themes and a summary
  4. upsert the property's ReviewAnalysis

Runs on the task queue; its failures end up in its own AgentResult and
never touch the refresh that spawned it.
"""

import asyncio
import json
import re
from typing import Any, Dict, List, Optional

import httpx

from agents.base import Agent, GatewayError, ReputationError
from config.settings import settings
from db.repository import ReputationRepository
from models.schemas import Property, ReviewAnalysis, ReviewText


SYSTEM_PROMPT = (
    "You are a hotel review analyst. Analyze guest reviews and identify key themes. "
    "Be specific and actionable. Always respond with valid JSON only, no markdown."
)

USER_TEMPLATE = """Analyze these {count} hotel reviews and provide:
1. Top 5 positive themes (things guests love) with frequency count and a representative quote
2. Top 5 negative themes (areas for improvement) with frequency count and a representative quote
3. One-sentence overall summary

Here are the reviews:

{reviews}

Respond ONLY with this JSON structure (no markdown, no code blocks):
{{
  "positive": [{{"theme": "Clean rooms", "count": 23, "quote": "The room was spotless..."}}],
  "negative": [{{"theme": "Slow WiFi", "count": 8, "quote": "WiFi was frustratingly slow..."}}],
  "summary": "Overall positive reception with consistent praise for..."
}}"""


def format_reviews(reviews: List[ReviewText]) -> str:
    return "\n\n---\n\n".join(
        f"Review {i} ({r.platform}, rating: {r.rating if r.rating is not None else 'N/A'}):\n{r.text}"
        for i, r in enumerate(reviews, 1)
    )


def parse_analysis(content: str) -> Dict[str, Any]:
    """Parse the model's JSON reply, tolerating ```json fences."""
    cleaned = re.sub(r"```(?:json)?\n?", "", content).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise GatewayError(f"Failed to parse AI analysis: {e}")
    if not isinstance(data, dict):
        raise GatewayError("AI analysis is not a JSON object")
    return data


class LlmGateway:
    """OpenAI-compatible chat completions client."""

    TIMEOUT = 120.0

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
    ):
        self.client = client or httpx.AsyncClient(timeout=self.TIMEOUT)
        self.url = url or settings.LLM_GATEWAY_URL
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.model = model or settings.LLM_MODEL

    async def analyze(self, reviews: List[ReviewText]) -> Dict[str, Any]:
        if not self.api_key:
            raise GatewayError("LLM_API_KEY is not configured")
        resp = await self.client.post(
            self.url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.TIMEOUT,
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": USER_TEMPLATE.format(
                        count=len(reviews), reviews=format_reviews(reviews)
                    )},
                ],
                "temperature": 0.3,
            },
        )
        if resp.status_code == 429:
            raise GatewayError("Rate limit exceeded. Please try again later.", 429)
        if resp.status_code == 402:
            raise GatewayError("AI credits depleted. Please add credits to continue.", 402)
        if resp.status_code >= 400:
            raise GatewayError(f"AI analysis failed: {resp.status_code}", resp.status_code)

        choices = resp.json().get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if not content:
            raise GatewayError("No response from AI")
        return parse_analysis(content)


class ReviewInsightsAgent(Agent):
    """
    Input:  Property
    Output: ReviewAnalysis
    """

    def __init__(
        self,
        repository: ReputationRepository,
        gateway: LlmGateway,
        review_sources: Dict[str, Any],
        max_reviews: Optional[int] = None,
    ):
        super().__init__(name="ReviewInsightsAgent")
        self.repository = repository
        self.gateway = gateway
        self.review_sources = review_sources
        self.max_reviews = max_reviews or settings.MAX_REVIEWS_FOR_INSIGHTS

    async def collect(self, prop: Property) -> int:
        """Fetch reviews from every source at once; store whatever arrived."""
        platforms = list(self.review_sources)
        outcomes = await asyncio.gather(
            *(self.review_sources[p].fetch_reviews(prop) for p in platforms),
            return_exceptions=True,
        )
        stored = 0
        for platform, outcome in zip(platforms, outcomes):
            if isinstance(outcome, BaseException):
                self.logger.warning(f"  {platform} reviews failed for {prop.name}: {outcome}")
                continue
            if outcome:
                stored += await self.repository.replace_review_texts(prop.id, platform, outcome)
                self.logger.info(f"  → {len(outcome)} {platform} reviews for {prop.name}")
        return stored

    async def run(self, prop: Property) -> ReviewAnalysis:
        await self.collect(prop)
        reviews = await self.repository.list_review_texts(prop.id, limit=self.max_reviews)
        if not reviews:
            raise ReputationError(f"No reviews found for {prop.name}")

        data = await self.gateway.analyze(reviews)
        analysis = ReviewAnalysis(
            property_id=prop.id,
            positive_themes=data.get("positive") or [],
            negative_themes=data.get("negative") or [],
            summary=data.get("summary") or "",
            review_count=len(reviews),
        )
        await self.repository.upsert_review_analysis(analysis)
        self.logger.info(
            f"Insights for {prop.name}: {len(analysis.positive_themes)} positive, "
            f"{len(analysis.negative_themes)} negative themes from {len(reviews)} reviews"
        )
        return analysis
