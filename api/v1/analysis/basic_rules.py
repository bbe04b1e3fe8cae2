"""
Basic rules analysis service.

Deterministic keyword and heuristic analysis that needs no external API.
Produces stable output for the same input, which makes it the default
provider for development and tests.
"""

import hashlib
import re
from collections import Counter
from typing import Any

from api.config.settings import Settings
from api.v1.analysis.schemas import (
    BusinessValue,
    FetchedContent,
    GeneratedPost,
    Narrative,
    Scenario,
    StructuredAnalysis,
)
from api.v1.core.exceptions import AnalysisError

STOPWORDS = {
    "a", "about", "all", "also", "an", "and", "any", "are", "as", "at", "be",
    "been", "but", "by", "can", "do", "for", "from", "get", "has", "have",
    "how", "if", "in", "into", "is", "it", "its", "just", "more", "most",
    "my", "new", "no", "not", "now", "of", "on", "one", "or", "our", "out",
    "so", "than", "that", "the", "their", "them", "then", "there", "these",
    "they", "this", "to", "up", "us", "was", "we", "what", "when", "which",
    "who", "why", "will", "with", "you", "your", "home", "page", "menu",
    "contact", "privacy", "policy", "terms", "cookies", "copyright", "rights",
    "reserved", "login", "sign", "click", "here", "read",
}

# business type -> indicative keywords
BUSINESS_TYPES: dict[str, set[str]] = {
    "Restaurant": {"menu", "restaurant", "dining", "chef", "cuisine", "reservation", "food"},
    "Software / SaaS": {"software", "platform", "app", "saas", "api", "cloud", "integrations", "dashboard"},
    "E-commerce": {"shop", "store", "cart", "shipping", "checkout", "products", "sale"},
    "Healthcare": {"health", "clinic", "patients", "medical", "care", "doctor", "therapy"},
    "Professional Services": {"consulting", "services", "clients", "agency", "firm", "solutions"},
    "Education": {"courses", "learn", "students", "training", "classes", "school"},
    "Real Estate": {"property", "homes", "listings", "realtor", "apartments", "rent"},
    "Fitness": {"fitness", "gym", "workout", "training", "classes", "yoga"},
}

AUDIENCE_BY_TYPE = {
    "Restaurant": "local diners and families",
    "Software / SaaS": "teams and businesses looking to streamline their work",
    "E-commerce": "online shoppers",
    "Healthcare": "patients and caregivers",
    "Professional Services": "business decision makers",
    "Education": "learners and parents",
    "Real Estate": "home buyers, sellers and renters",
    "Fitness": "health-conscious adults",
}

# (segment template, problem template, demographics)
SEGMENT_TEMPLATES = [
    (
        "First-time {audience}",
        "Unsure where to start with {focus} and worried about choosing wrong",
        "New to the category, researching options online",
    ),
    (
        "Budget-conscious {audience}",
        "Needs {focus} that delivers value without overspending",
        "Price-sensitive, compares several providers before buying",
    ),
    (
        "Busy professionals",
        "Has little time and wants {focus} that just works",
        "Ages 28-45, time-poor, mobile-first",
    ),
    (
        "Local community members",
        "Looking for a trusted nearby option for {focus}",
        "Lives or works nearby, relies on reviews and word of mouth",
    ),
    (
        "Small business owners",
        "Wants {focus} that helps their own business grow",
        "Owner-operators with 1-50 employees",
    ),
    (
        "Returning customers",
        "Already familiar with {business} and looking for more",
        "Existing customers with prior purchases",
    ),
    (
        "Premium seekers",
        "Wants the best possible {focus} experience and will pay for quality",
        "Higher income, values expertise and service",
    ),
    (
        "Researchers and comparers",
        "Evaluating {focus} options in depth before committing",
        "Reads reviews, guides and comparisons",
    ),
]

_WORD_RE = re.compile(r"[a-zA-Z][a-zA-Z\-']{2,}")


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def _digest(*parts: str) -> str:
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class BasicRulesAnalysisService:
    """Heuristic analysis and template-based generation."""

    def __init__(self, settings: Settings):
        self.settings = settings

    # Analysis

    def extract_keywords(self, text: str, limit: int = 10) -> list[str]:
        words = [w.lower().strip("-'") for w in _WORD_RE.findall(text)]
        counts = Counter(w for w in words if w not in STOPWORDS and len(w) > 2)
        # Ties break alphabetically so output is stable
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [word for word, _ in ranked[:limit]]

    def classify_business(self, keywords: list[str], text: str) -> str:
        vocabulary = set(keywords) | {w.lower() for w in _WORD_RE.findall(text[:5000])}
        best_type, best_score = "General Business", 0
        for business_type, indicators in BUSINESS_TYPES.items():
            score = len(vocabulary & indicators)
            if score > best_score:
                best_type, best_score = business_type, score
        return best_type

    def detect_brand_voice(self, text: str) -> str:
        if not text:
            return "professional"
        lowered = text.lower()
        exclamations = text.count("!")
        second_person = len(re.findall(r"\byou(r)?\b", lowered))
        if exclamations >= 3:
            return "energetic and enthusiastic"
        if second_person >= 5:
            return "friendly and conversational"
        return "professional and informative"

    def business_name(self, content: FetchedContent) -> str:
        site_name = content.metadata.get("og:site_name")
        if site_name:
            return site_name
        if content.title:
            # "Acme Widgets | Home" -> "Acme Widgets"
            return re.split(r"\s[|\-–—:]\s", content.title)[0].strip()
        host = content.url.split("//", 1)[-1].split("/", 1)[0]
        return host.removeprefix("www.")

    async def analyze(
        self, content: FetchedContent, context: dict[str, Any]
    ) -> StructuredAnalysis:
        corpus = " ".join(
            part
            for part in (
                content.title,
                content.metadata.get("description", ""),
                content.metadata.get("keywords", ""),
                content.text,
            )
            if part
        )
        if len(corpus.split()) < 3:
            raise AnalysisError("Not enough page content to analyze")

        keywords = self.extract_keywords(corpus)
        business_type = context.get("business_type") or self.classify_business(
            keywords, corpus
        )
        description = content.metadata.get("description") or content.text[:280]

        return StructuredAnalysis(
            business_name=context.get("business_name") or self.business_name(content),
            business_type=business_type,
            target_audience=AUDIENCE_BY_TYPE.get(business_type, "general consumers"),
            content_focus=", ".join(keywords[:3]) or business_type.lower(),
            brand_voice=self.detect_brand_voice(content.text),
            description=description.strip(),
            keywords=keywords,
        )

    # Generation

    async def generate_scenarios(
        self, analysis: StructuredAnalysis, count: int
    ) -> list[Scenario]:
        focus = analysis.content_focus or analysis.business_type.lower()
        audience = analysis.target_audience.split(" and ")[0]

        scenarios: list[Scenario] = []
        for index, (segment_t, problem_t, demographics) in enumerate(SEGMENT_TEMPLATES):
            segment = segment_t.format(audience=audience)
            value_seed = int(_digest(analysis.business_name, segment)[:4], 16)
            levels = ("low", "medium", "high")
            scenarios.append(
                Scenario(
                    segment=segment,
                    customer_problem=problem_t.format(
                        focus=focus, business=analysis.business_name
                    ),
                    demographics=demographics,
                    search_behavior=[
                        f"best {kw} near me" if index == 3 else f"{kw} for {segment.lower()}"
                        for kw in analysis.keywords[:3]
                    ],
                    business_value=BusinessValue(
                        search_volume=levels[value_seed % 3],
                        conversion_potential=levels[(value_seed // 3) % 3],
                        competition=levels[(value_seed // 9) % 3],
                    ),
                    priority=len(scenarios) + 1,
                )
            )
            if len(scenarios) >= count:
                break
        return scenarios

    async def enrich_with_pitch(
        self, scenarios: list[Scenario], analysis: StructuredAnalysis
    ) -> list[Scenario]:
        return [
            scenario.model_copy(
                update={
                    "pitch": (
                        f"For {scenario.segment.lower()}: "
                        f"{scenario.customer_problem.rstrip('.')}? "
                        f"{analysis.business_name} is a "
                        f"{analysis.business_type.lower()} focused on "
                        f"{analysis.content_focus} that makes getting started simple."
                    )
                }
            )
            for scenario in scenarios
        ]

    async def enrich_with_image(
        self, scenarios: list[Scenario], analysis: StructuredAnalysis
    ) -> list[Scenario]:
        base_url = self.settings.image_base_url.rstrip("/")
        return [
            scenario.model_copy(
                update={
                    "image_url": (
                        f"{base_url}/{_slug(analysis.business_name)}/"
                        f"{_slug(scenario.segment)}-"
                        f"{_digest(analysis.business_name, scenario.segment)[:8]}.png"
                    )
                }
            )
            for scenario in scenarios
        ]

    async def generate_narrative(self, analysis: StructuredAnalysis) -> Narrative:
        filled = [
            bool(analysis.business_name),
            analysis.business_type != "General Business",
            bool(analysis.description),
            len(analysis.keywords) >= 3,
        ]
        confidence = round(0.4 + 0.15 * sum(filled), 2)

        narrative = (
            f"{analysis.business_name} is a {analysis.business_type.lower()} serving "
            f"{analysis.target_audience}. Its content centers on "
            f"{analysis.content_focus}, written in a {analysis.brand_voice} voice. "
            f"{analysis.description}".strip()
        )
        key_insights = [
            f"Primary audience: {analysis.target_audience}",
            f"Brand voice: {analysis.brand_voice}",
        ]
        if analysis.keywords:
            key_insights.append(
                f"Top themes: {', '.join(analysis.keywords[:5])}"
            )
        return Narrative(
            narrative=narrative, confidence=min(confidence, 1.0), key_insights=key_insights
        )

    async def generate_post(
        self, topic: str, analysis: StructuredAnalysis, instructions: str | None
    ) -> GeneratedPost:
        topic = topic.strip()
        if not topic:
            raise AnalysisError("Topic is empty")

        outline = [
            f"Why {topic} matters for {analysis.target_audience}",
            f"Common mistakes with {topic}",
            f"How {analysis.business_name} approaches {topic}",
            "Next steps",
        ]
        sections = [
            f"## {heading}\n\n"
            f"{analysis.business_name} works with {analysis.target_audience} every day. "
            f"This section covers {heading.lower()} with a focus on "
            f"{analysis.content_focus}."
            for heading in outline
        ]
        if instructions:
            sections.append(f"_Notes: {instructions.strip()}_")

        return GeneratedPost(
            title=f"{topic.title()}: A Guide from {analysis.business_name}",
            outline=outline,
            body="\n\n".join(sections),
            keywords=[topic.lower(), *analysis.keywords[:4]],
        )
