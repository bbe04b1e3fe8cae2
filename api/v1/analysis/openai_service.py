"""
OpenAI-backed analysis service.

Uses JSON-mode chat completions for structured output and the images API for
audience visuals. Any transport failure or malformed structured output is an
AnalysisError, so the job is retried like any other stage failure.
"""

import json
import logging
from typing import Any, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from api.config.settings import Settings
from api.v1.analysis.schemas import (
    FetchedContent,
    GeneratedPost,
    Narrative,
    Scenario,
    StructuredAnalysis,
)
from api.v1.core.exceptions import AnalysisError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

ANALYST_PROMPT = (
    "You are a marketing analyst. Respond only with a JSON object matching the "
    "requested fields. Do not invent facts that the page does not support."
)


class _ScenarioList(BaseModel):
    scenarios: list[Scenario] = Field(default_factory=list)


class _PitchList(BaseModel):
    pitches: list[str]


class OpenAIAnalysisService:
    """Analysis and generation through the OpenAI API."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client = None

    def _get_client(self):
        """Lazy load the async OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise RuntimeError(
                    "openai package not installed. Run: pip install 'pipeline-jobs[openai]'"
                ) from e
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._client

    async def _complete_json(self, prompt: str, model_cls: type[ModelT]) -> ModelT:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.settings.openai_model,
                response_format={"type": "json_object"},
                temperature=0.4,
                messages=[
                    {"role": "system", "content": ANALYST_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
        except Exception as e:
            raise AnalysisError(f"OpenAI API error: {e}") from e

        raw = response.choices[0].message.content or ""
        try:
            return model_cls.model_validate(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning(
                "Malformed structured output",
                extra={"model": self.settings.openai_model, "expected": model_cls.__name__},
            )
            raise AnalysisError(
                f"Malformed structured output for {model_cls.__name__}"
            ) from e

    async def analyze(
        self, content: FetchedContent, context: dict[str, Any]
    ) -> StructuredAnalysis:
        prompt = (
            "Analyze this website and return JSON with keys business_name, "
            "business_type, target_audience, content_focus, brand_voice, "
            "description and keywords (list of strings).\n\n"
            f"URL: {content.url}\n"
            f"Title: {content.title}\n"
            f"Meta description: {content.metadata.get('description', '')}\n"
            f"Caller context: {json.dumps(context)}\n\n"
            f"Page text:\n{content.text[:8000]}"
        )
        return await self._complete_json(prompt, StructuredAnalysis)

    async def generate_scenarios(
        self, analysis: StructuredAnalysis, count: int
    ) -> list[Scenario]:
        prompt = (
            f"Create {count} distinct customer audience scenarios for this business. "
            "Return JSON {\"scenarios\": [...]} where each item has segment, "
            "customer_problem, demographics, search_behavior (list of search "
            "queries), business_value {search_volume, conversion_potential, "
            "competition} using low|medium|high, and priority (1 = best).\n\n"
            f"Business analysis: {analysis.model_dump_json()}"
        )
        result = await self._complete_json(prompt, _ScenarioList)
        return result.scenarios[:count]

    async def enrich_with_pitch(
        self, scenarios: list[Scenario], analysis: StructuredAnalysis
    ) -> list[Scenario]:
        prompt = (
            "Write a short, persuasive pitch (2-3 sentences) for each audience "
            f"in the brand voice '{analysis.brand_voice}'. Return JSON "
            "{\"pitches\": [...]} with one string per audience, in order.\n\n"
            f"Business: {analysis.business_name} ({analysis.business_type})\n"
            f"Audiences: {json.dumps([s.segment + ': ' + s.customer_problem for s in scenarios])}"
        )
        result = await self._complete_json(prompt, _PitchList)
        if len(result.pitches) != len(scenarios):
            raise AnalysisError(
                f"Expected {len(scenarios)} pitches, got {len(result.pitches)}"
            )
        return [
            scenario.model_copy(update={"pitch": pitch})
            for scenario, pitch in zip(scenarios, result.pitches)
        ]

    async def enrich_with_image(
        self, scenarios: list[Scenario], analysis: StructuredAnalysis
    ) -> list[Scenario]:
        client = self._get_client()
        enriched = []
        for scenario in scenarios:
            prompt = (
                f"A warm, realistic marketing photo representing {scenario.segment} "
                f"for a {analysis.business_type}. No text in the image."
            )
            try:
                response = await client.images.generate(
                    model=self.settings.openai_image_model,
                    prompt=prompt,
                    size="1024x1024",
                    n=1,
                )
            except Exception as e:
                raise AnalysisError(f"OpenAI image error: {e}") from e
            image_url = response.data[0].url if response.data else None
            if not image_url:
                raise AnalysisError(f"No image returned for {scenario.segment}")
            enriched.append(scenario.model_copy(update={"image_url": image_url}))
        return enriched

    async def generate_narrative(self, analysis: StructuredAnalysis) -> Narrative:
        prompt = (
            "Write a narrative summary (2-3 paragraphs) of this business for its "
            "owner. Return JSON with keys narrative, confidence (0-1) and "
            "key_insights (list of short strings).\n\n"
            f"Business analysis: {analysis.model_dump_json()}"
        )
        return await self._complete_json(prompt, Narrative)

    async def generate_post(
        self, topic: str, analysis: StructuredAnalysis, instructions: str | None
    ) -> GeneratedPost:
        prompt = (
            f"Write a blog post about '{topic}' for {analysis.business_name}, "
            f"aimed at {analysis.target_audience}, in a {analysis.brand_voice} voice. "
            "Return JSON with keys title, outline (list of headings), body "
            "(markdown) and keywords (list).\n"
            f"Extra instructions: {instructions or 'none'}\n\n"
            f"Business analysis: {analysis.model_dump_json()}"
        )
        return await self._complete_json(prompt, GeneratedPost)
