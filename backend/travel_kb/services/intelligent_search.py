"""Query-time retrieval and synthesis over the destination corpus.

Read-only: nothing here writes to the store.
"""

import asyncio
import logging
import re
import statistics
import time

from travel_kb.config import settings
from travel_kb.schemas.destination import EnhancedDestination
from travel_kb.schemas.knowledge import SimilarityResult
from travel_kb.schemas.search import (
    CulturalTip,
    EmergencyContacts,
    HealthInfo,
    LegalAlert,
    PersonalizedRecommendation,
    PracticalInformation,
    SearchData,
    SearchMetadata,
    SearchRequest,
    SearchResponse,
    SearchStatus,
)
from travel_kb.services.data_acquisition import ENHANCED_CITY_TYPE, LEGACY_CONTENT_TYPES, destination_from_record
from travel_kb.services.llm_client import GenerationTask, LLMChain
from travel_kb.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

RETRIEVAL_THRESHOLD = 0.3
SIMILAR_THRESHOLD = 0.4
MAX_DESTINATIONS = 5
MAX_RECOMMENDATIONS = 8
MAX_AI_RECOMMENDATIONS = 3
MAX_LEGAL_ALERTS = 5
MAX_CULTURAL_TIPS = 8
MAX_SIMILAR = 3
MAX_CONFIDENCE = 0.95
EMPTY_CONFIDENCE = 0.3

_NUMBERED_RE = re.compile(r"^\s*\d+[.)]\s*(.+)$")
_PHONE_RE = re.compile(r"\d{2,}")

RECOMMEND_SYSTEM = (
    "You are a knowledgeable local travel advisor. Give specific, actionable, "
    "culturally aware recommendations."
)


def _concern_alerts(destination: EnhancedDestination) -> dict[str, tuple[list[str], LegalAlert]]:
    laws = destination.travel_laws
    return {
        "photography": (
            laws.photography.restricted_areas,
            LegalAlert(
                severity="warning",
                title="Photography Restrictions Apply",
                description="Certain areas have photography restrictions",
                consequences="; ".join(laws.photography.restricted_areas),
                recommendations=[
                    "Ask permission before photographing people",
                    "Avoid restricted areas",
                    "Check permit requirements for commercial photography",
                ],
            ),
        ),
        "alcohol": (
            laws.public_behavior.alcohol_restrictions,
            LegalAlert(
                severity="warning",
                title="Alcohol Restrictions in Effect",
                description="Local alcohol laws may be strict",
                consequences="; ".join(laws.public_behavior.alcohol_restrictions),
                recommendations=[
                    "Check local drinking laws",
                    "Avoid public consumption unless permitted",
                    "Respect religious and cultural sensitivities",
                ],
            ),
        ),
        "dress-codes": (
            laws.public_behavior.dress_codes,
            LegalAlert(
                severity="warning",
                title="Dress Codes Are Enforced",
                description="Public dress rules apply in some places",
                consequences="; ".join(laws.public_behavior.dress_codes),
                recommendations=[
                    f"Religious sites: {destination.cultural_norms.dress_code.religious}",
                    "Carry a scarf or cover-up",
                ],
            ),
        ),
        "religious-sites": (
            destination.cultural_norms.religious_considerations,
            LegalAlert(
                severity="warning",
                title="Religious Site Rules",
                description="Religious sites have rules visitors must follow",
                consequences="; ".join(destination.cultural_norms.religious_considerations),
                recommendations=["Follow site-specific instructions", "Dress modestly", "Remove shoes where required"],
            ),
        ),
        "driving": (
            laws.transportation.driving_laws,
            LegalAlert(
                severity="warning",
                title="Local Driving Laws",
                description="Driving rules may differ from your home country",
                consequences="; ".join(laws.transportation.driving_laws),
                recommendations=["Carry an international driving permit", "Check insurance coverage"],
            ),
        ),
        "customs": (
            laws.immigration.customs_regulations,
            LegalAlert(
                severity="warning",
                title="Customs Regulations",
                description="Declare restricted goods on arrival and departure",
                consequences="; ".join(laws.immigration.customs_regulations),
                recommendations=["Declare valuable items", "Check the prohibited items list"],
            ),
        ),
    }


class IntelligentSearchEngine:
    def __init__(self, store: VectorStore, llm: LLMChain, timeout: float | None = None):
        self.store = store
        self.llm = llm
        self.timeout = timeout or settings.search_timeout_seconds

    async def search(self, request: SearchRequest) -> SearchResponse:
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(self._search(request, started), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Search timed out after {self.timeout}s: {request.query!r}")
            return self._error_response("Search timed out", started)
        except Exception as e:
            logger.error(f"Intelligent search error: {e}")
            return self._error_response(str(e) or "Search failed", started)

    async def _search(self, request: SearchRequest, started: float) -> SearchResponse:
        logger.info(f"Processing search: {request.query!r}")
        results = await self.store.search_similar(
            self.enhance_query(request),
            content_types=[ENHANCED_CITY_TYPE, *LEGACY_CONTENT_TYPES],
            metadata=self.metadata_filter(request),
            limit=request.limit,
            threshold=RETRIEVAL_THRESHOLD,
        )
        destinations = self._materialize(results)
        top = destinations[0] if destinations else None

        recommendations, alerts, tips, similar = await asyncio.gather(
            self.recommendations(top, request),
            self.legal_alerts(top, request),
            self.cultural_tips(top),
            self.similar_destinations(top),
        )

        demo = not self.store.vectors_enabled or any(r.match_type == "text" for r in results)
        warnings = self.warnings(top)
        if demo:
            warnings.append("Semantic search unavailable - results use keyword matching")

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"Search completed in {elapsed_ms:.0f}ms ({len(results)} results)")
        return SearchResponse(
            data=SearchData(
                destination=top,
                recommendations=recommendations,
                legal_alerts=alerts,
                cultural_tips=tips,
                practical_info=self.practical_info(top),
                similar_destinations=similar,
            ),
            metadata=SearchMetadata(
                confidence=self.confidence(results, top),
                search_time_ms=elapsed_ms,
                data_quality=top.metadata.data_quality.overall_score if top else 0.0,
                sources=[s.name for s in top.metadata.sources] if top else [],
                last_updated=top.metadata.last_updated if top else None,
            ),
            status=SearchStatus(
                code=200,
                message="Search completed successfully",
                mode="demo" if demo else "live",
                warnings=warnings,
            ),
        )

    # ---------- Retrieval ----------

    @staticmethod
    def enhance_query(request: SearchRequest) -> str:
        parts = [request.query]
        ctx = request.context
        if ctx.budget:
            parts.append(f"{ctx.budget.min:g}-{ctx.budget.max:g} {ctx.budget.currency} budget travel")
        if ctx.interests:
            parts.append(f"{' '.join(ctx.interests)} activities")
        if ctx.cultural_preferences:
            parts.append(f"{' '.join(ctx.cultural_preferences)} culture")
        if ctx.legal_concerns:
            parts.append(f"legal requirements {' '.join(ctx.legal_concerns)}")

        filters = request.filters
        if filters.languages:
            parts.append(f"{' '.join(filters.languages)} speaking")
        if filters.safety_level:
            parts.append(f"safe travel safety rating {filters.safety_level:g}")
        if filters.cost_level:
            parts.append(f"{' '.join(filters.cost_level)} cost")
        return " ".join(parts)

    @staticmethod
    def metadata_filter(request: SearchRequest) -> dict | None:
        metadata: dict = {}
        if request.filters.countries:
            metadata["country"] = request.filters.countries
        if request.filters.cost_level:
            metadata["cost_level"] = request.filters.cost_level
        if request.filters.safety_level:
            metadata["safety_rating"] = {"gte": request.filters.safety_level}
        return metadata or None

    def _materialize(self, results: list[SimilarityResult]) -> list[EnhancedDestination]:
        destinations = []
        for result in results:
            destination = destination_from_record(result.record)
            if destination is not None:
                destinations.append(destination)
            if len(destinations) >= MAX_DESTINATIONS:
                break
        return destinations

    # ---------- Synthesis ----------

    async def recommendations(
        self, destination: EnhancedDestination | None, request: SearchRequest
    ) -> list[PersonalizedRecommendation]:
        if destination is None:
            return []

        recs: list[PersonalizedRecommendation] = []
        prompt = (
            f"Based on the traveller's interests and the destination {destination.display_name}, "
            "generate personalized travel recommendations.\n\n"
            f"Traveller context: {request.context.model_dump_json(exclude_none=True)}\n"
            f"Available attractions: {', '.join(a.name for a in destination.attractions) or 'unknown'}\n"
            f"Cultural considerations: {', '.join(destination.cultural_norms.etiquette)}\n\n"
            "Provide 5 specific, actionable recommendations as a numbered list, one per line, "
            "in the form '1. Title: reason'."
        )
        result = await self.llm.generate(
            GenerationTask(name="recommendations", system=RECOMMEND_SYSTEM, prompt=prompt, fallback="",
                           max_tokens=600, temperature=0.7)
        )
        for line in result.text.splitlines():
            match = _NUMBERED_RE.match(line)
            if not match:
                continue
            text = match.group(1).strip()
            title, _, reason = text.partition(":")
            recs.append(PersonalizedRecommendation(
                type="activity",
                title=title.strip(" *")[:120] or "Local recommendation",
                description=text,
                reasoning=reason.strip() or "Suggested for your interests",
                confidence=0.8,
                priority="medium",
            ))
            if len(recs) >= MAX_AI_RECOMMENDATIONS:
                break

        for i, attraction in enumerate(destination.attractions[:3]):
            recs.append(PersonalizedRecommendation(
                type="attraction",
                title=attraction.name,
                description=attraction.description or f"Popular attraction in {destination.name}",
                reasoning=f"Dress code: {destination.cultural_norms.dress_code.general}",
                confidence=round(0.9 - i * 0.1, 2),
                priority="high" if i == 0 else "medium",
            ))
        return recs[:MAX_RECOMMENDATIONS]

    async def legal_alerts(
        self, destination: EnhancedDestination | None, request: SearchRequest
    ) -> list[LegalAlert]:
        if destination is None:
            return []

        alerts = [
            LegalAlert(
                severity="critical",
                title=f"High-Risk Legal Violation: {v.violation}",
                description=v.penalty,
                consequences="; ".join(x for x in (v.penalty, v.fine_range, v.jail_time) if x),
                recommendations=[
                    "Strictly avoid this behavior",
                    "Understand local laws before travel",
                    "Contact embassy if in doubt",
                ],
            )
            for v in destination.severe_violations()
        ]

        concerns = _concern_alerts(destination)
        for concern in request.context.legal_concerns:
            entry = concerns.get(concern.lower())
            if entry and entry[0]:
                alerts.append(entry[1])
        return alerts[:MAX_LEGAL_ALERTS]

    async def cultural_tips(self, destination: EnhancedDestination | None) -> list[CulturalTip]:
        if destination is None:
            return []
        norms = destination.cultural_norms
        tips = [
            CulturalTip(
                category="Etiquette",
                tip=item,
                importance="important",
                context=f"Essential for respectful interaction in {destination.name}",
            )
            for item in norms.etiquette[:3]
        ]
        tips += [
            CulturalTip(
                category="Taboos",
                tip=f"Avoid: {item}",
                importance="essential",
                context="Violating this could cause serious offense",
            )
            for item in norms.taboos[:2]
        ]
        tips.append(CulturalTip(
            category="Dress Code",
            tip=norms.dress_code.general,
            importance="important",
            context=f"Religious sites: {norms.dress_code.religious}",
        ))
        if norms.dining_etiquette:
            tips.append(CulturalTip(
                category="Dining",
                tip=norms.dining_etiquette[0],
                importance="nice-to-know",
                context="Table manners differ between cultures",
            ))
        return tips[:MAX_CULTURAL_TIPS]

    @staticmethod
    def practical_info(destination: EnhancedDestination | None) -> PracticalInformation:
        if destination is None:
            return PracticalInformation()

        immigration = destination.travel_laws.immigration
        penalties = destination.travel_laws.penalties
        police = "911"
        for contact in penalties.contact_authorities:
            number = _PHONE_RE.search(contact)
            if number and "police" in contact.lower():
                police = number.group(0)
                break

        if immigration.visa_required:
            visa = f"Visa required ({', '.join(immigration.visa_types) or 'check types'}), max stay {immigration.max_stay_duration} days"
        else:
            visa = f"No visa required for stays up to {immigration.max_stay_duration} days"

        return PracticalInformation(
            visa_requirements=visa,
            currency_info=f"Local currency: {destination.currency}",
            language_help=[
                f"{p.english}: {p.local}" + (f" ({p.pronunciation})" if p.pronunciation else "")
                for p in destination.language_guide.essential_phrases
            ],
            emergency_contacts=EmergencyContacts(
                police=police,
                medical=police,
                embassy=penalties.embassy_contacts[0] if penalties.embassy_contacts else "Check embassy website",
            ),
            health_info=HealthInfo(vaccinations=list(immigration.health_requirements)),
        )

    async def similar_destinations(self, destination: EnhancedDestination | None) -> list[EnhancedDestination]:
        if destination is None:
            return []
        query = (
            f"{destination.cost_level} {' '.join(destination.cultural_norms.etiquette)} "
            f"{destination.country} similar destinations"
        )
        results = await self.store.search_similar(
            query,
            content_types=[ENHANCED_CITY_TYPE, "destination"],
            metadata={"country": {"ne": destination.country}, "cost_level": destination.cost_level},
            limit=4,
            threshold=SIMILAR_THRESHOLD,
        )
        similar = []
        for result in results:
            other = destination_from_record(result.record)
            if other is not None and other.id != destination.id:
                similar.append(other)
        return similar[:MAX_SIMILAR]

    # ---------- Scoring ----------

    @staticmethod
    def confidence(results: list[SimilarityResult], top: EnhancedDestination | None) -> float:
        if not results or top is None:
            return EMPTY_CONFIDENCE
        mean_similarity = statistics.mean(r.similarity for r in results)
        return min(0.6 * mean_similarity + 0.4 * top.metadata.data_quality.overall_score, MAX_CONFIDENCE)

    @staticmethod
    def warnings(top: EnhancedDestination | None) -> list[str]:
        if top is None:
            return ["No destinations found matching your criteria"]
        warnings = []
        if top.metadata.data_quality.overall_score < 0.6:
            warnings.append("Data quality for this destination is below average - verify information independently")
        if top.safety_rating < 6:
            warnings.append("This destination has a lower safety rating - exercise increased caution")
        if top.severe_violations():
            warnings.append(
                "This destination has strict laws with severe penalties - review legal requirements carefully"
            )
        return warnings

    @staticmethod
    def _error_response(message: str, started: float) -> SearchResponse:
        return SearchResponse(
            metadata=SearchMetadata(search_time_ms=(time.perf_counter() - started) * 1000),
            status=SearchStatus(
                code=500,
                message=message,
                mode="error",
                warnings=["Search system temporarily unavailable"],
            ),
        )
