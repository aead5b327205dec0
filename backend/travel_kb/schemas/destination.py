"""Destination record schema.

Every block of an EnhancedDestination is always present. Fields carry the
documented defaults, so a record decoded from partial or malformed AI output
still has the full shape downstream consumers rely on.
"""

import logging
import typing
from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import (
    AliasGenerator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

COST_LEVEL_ALIASES = {
    "cheap": "budget",
    "low": "budget",
    "medium": "moderate",
    "mid-range": "moderate",
    "midrange": "moderate",
    "high": "expensive",
    "luxury": "expensive",
}


def _normalize_cost_level(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip().lower()
        return COST_LEVEL_ALIASES.get(value, value)
    return value


def _normalize_severity(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


# Normalizers live on the types so lenient per-field decoding applies them too
CostLevel = Annotated[Literal["budget", "moderate", "expensive"], BeforeValidator(_normalize_cost_level)]
Severity = Annotated[Literal["minor", "moderate", "severe"], BeforeValidator(_normalize_severity)]
SourceType = Literal["wikipedia", "osm", "government", "weather", "currency", "events", "user", "expert"]
FeedbackCategory = Literal["accuracy", "completeness", "usefulness", "timeliness"]

FRESHNESS_HORIZON_DAYS = 90


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def age_in_days(last_updated: datetime, now: datetime) -> float:
    return max((now - last_updated).total_seconds() / 86400, 0.0)


def freshness_score(last_updated: datetime, now: datetime | None = None) -> float:
    """1.0 when just fetched, decaying linearly to 0 over the freshness horizon."""
    now = now or utcnow()
    return max(0.0, 1 - age_in_days(last_updated, now) / FRESHNESS_HORIZON_DAYS)


class TolerantModel(BaseModel):
    """Base model that reads snake_case or camelCase keys and can decode leniently.

    camelCase is accepted on input only; output is always snake_case.
    """

    model_config = ConfigDict(
        alias_generator=AliasGenerator(validation_alias=to_camel),
        populate_by_name=True,
        extra="ignore",
    )

    @classmethod
    def from_payload(cls, data: Any):
        """Decode ``data`` strictly, falling back to field-by-field defaulting.

        Any field that fails validation (wrong type, null, bad literal) keeps its
        default. Nested models and lists of models are decoded the same way, so
        one broken attraction does not discard the whole list.
        """
        if isinstance(data, cls):
            return data
        if not isinstance(data, dict):
            return cls()
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            logger.debug(f"{cls.__name__}: strict decode failed, defaulting fields ({e.error_count()} errors)")

        values: dict[str, Any] = {}
        for name, info in cls.model_fields.items():
            if name in data:
                raw = data[name]
            elif isinstance(info.validation_alias, str) and info.validation_alias in data:
                raw = data[info.validation_alias]
            else:
                continue
            if raw is None:
                continue

            annotation = info.annotation
            origin = typing.get_origin(annotation)
            args = typing.get_args(annotation)

            try:
                if isinstance(annotation, type) and issubclass(annotation, TolerantModel):
                    values[name] = annotation.from_payload(raw)
                elif origin is list and args and isinstance(args[0], type) and issubclass(args[0], TolerantModel):
                    if isinstance(raw, list):
                        values[name] = [
                            item for item in (args[0].decode_item(entry) for entry in raw) if item is not None
                        ]
                else:
                    # metadata carries constraints and normalizers declared on the field
                    adapter = TypeAdapter(Annotated[(annotation, *info.metadata)] if info.metadata else annotation)
                    values[name] = adapter.validate_python(raw)
            except ValidationError:
                logger.debug(f"{cls.__name__}.{name}: invalid value dropped, using default")

        return cls.model_validate(values)

    @classmethod
    def decode_item(cls, data: Any):
        """Lenient decode of one list entry; None when required fields are unusable."""
        if not isinstance(data, dict):
            return None
        try:
            return cls.from_payload(data)
        except ValidationError:
            return None


# ---------- Shared blocks ----------


class Coordinates(TolerantModel):
    latitude: float = 0.0
    longitude: float = 0.0

    def is_valid(self) -> bool:
        if self.latitude == 0 or self.longitude == 0:
            return False
        return -90 <= self.latitude <= 90 and -180 <= self.longitude <= 180


class DataSource(TolerantModel):
    """Provenance for one piece of destination data."""

    name: str
    type: SourceType
    url: str | None = None
    last_fetched: datetime = Field(default_factory=utcnow)
    reliability: float = Field(default=0.5, ge=0, le=1)


class UserRating(TolerantModel):
    destination_id: str
    user_id: str = "anonymous"
    rating: int = Field(ge=1, le=5)
    category: FeedbackCategory
    comment: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


def _clamp_unit(value: Any) -> float:
    value = float(value)
    return min(max(value, 0.0), 1.0)


class QualityMetrics(TolerantModel):
    """Five independent quality dimensions in [0, 1].

    ``overall_score`` is computed on every access, so it always equals the
    mean of the current dimensions.
    """

    freshness: float = 0.0
    source_reliability: float = 0.0
    user_validation: float = 0.0
    expert_review: float = 0.0
    cross_reference_accuracy: float = 0.0

    @field_validator(
        "freshness",
        "source_reliability",
        "user_validation",
        "expert_review",
        "cross_reference_accuracy",
        mode="before",
    )
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return _clamp_unit(value)

    @computed_field
    @property
    def overall_score(self) -> float:
        return (
            self.freshness
            + self.source_reliability
            + self.user_validation
            + self.expert_review
            + self.cross_reference_accuracy
        ) / 5


# ---------- Travel laws ----------


class VisaAndEntryRequirements(TolerantModel):
    visa_required: bool = True
    visa_types: list[str] = ["Tourist"]
    max_stay_duration: int = 90
    entry_restrictions: list[str] = ["Valid passport required"]
    customs_regulations: list[str] = ["Declare items over $10,000"]
    health_requirements: list[str] = ["Check vaccination requirements"]


class TransportationLaws(TolerantModel):
    driving_laws: list[str] = ["Valid license required"]
    public_transport_rules: list[str] = ["Keep tickets until end of journey"]
    ride_sharing_regulations: list[str] = ["Use licensed services"]
    cycling_rules: list[str] = ["Follow traffic laws"]
    walking_regulations: list[str] = ["Use designated crossings"]


class AccommodationRegulations(TolerantModel):
    hotel_registration: list[str] = ["Provide ID at check-in"]
    short_term_rentals: list[str] = ["Verify property registration"]
    guest_obligations: list[str] = ["Respect property rules"]
    tourist_tax: list[str] = ["May apply in some areas"]


class BehaviorRestrictions(TolerantModel):
    noise_ordinances: list[str] = ["Quiet hours typically 10 PM - 6 AM"]
    alcohol_restrictions: list[str] = ["Check local drinking laws"]
    smoking_bans: list[str] = ["No smoking in public buildings"]
    public_display_restrictions: list[str] = ["Respect local customs"]
    dress_codes: list[str] = ["Dress appropriately for cultural sites"]


class PhotographyRules(TolerantModel):
    restricted_areas: list[str] = ["Military installations", "Government buildings"]
    permits_required: list[str] = ["Commercial photography"]
    privacy_laws: list[str] = ["Respect individuals' privacy"]
    commercial_restrictions: list[str] = ["Check licensing requirements"]


class CommercialRegulations(TolerantModel):
    tax_refunds: list[str] = ["Keep receipts for tax refunds"]
    customs_declaration: list[str] = ["Declare valuable purchases"]
    restricted_items: list[str] = ["Check prohibited items list"]
    bargaining_etiquette: list[str] = ["Respect local practices"]


class Violation(TolerantModel):
    violation: str
    penalty: str = "Follow local laws and regulations"
    severity: Severity = "moderate"
    fine_range: str | None = None
    jail_time: str | None = None


def _default_violations() -> list[Violation]:
    return [
        Violation(
            violation="Overstaying visa",
            penalty="Fines and deportation",
            severity="severe",
        )
    ]


class ViolationPenalties(TolerantModel):
    common_violations: list[Violation] = Field(default_factory=_default_violations)
    contact_authorities: list[str] = ["Local police: 911"]
    emergency_procedures: list[str] = ["Follow local laws and regulations", "Contact embassy if arrested"]
    embassy_contacts: list[str] = ["Check embassy website"]


class TravelLaws(TolerantModel):
    immigration: VisaAndEntryRequirements = Field(default_factory=VisaAndEntryRequirements)
    transportation: TransportationLaws = Field(default_factory=TransportationLaws)
    accommodation: AccommodationRegulations = Field(default_factory=AccommodationRegulations)
    public_behavior: BehaviorRestrictions = Field(default_factory=BehaviorRestrictions)
    photography: PhotographyRules = Field(default_factory=PhotographyRules)
    shopping: CommercialRegulations = Field(default_factory=CommercialRegulations)
    penalties: ViolationPenalties = Field(default_factory=ViolationPenalties)

    def is_empty(self) -> bool:
        """True when no block carries any guidance at all."""
        for block in (
            self.immigration,
            self.transportation,
            self.accommodation,
            self.public_behavior,
            self.photography,
            self.shopping,
            self.penalties,
        ):
            for value in block.__dict__.values():
                if isinstance(value, list) and value:
                    return False
        return True

    @classmethod
    def minimal(cls) -> "TravelLaws":
        """Conservative defaults for records upgraded from the legacy shape."""
        return cls(
            immigration=VisaAndEntryRequirements(
                customs_regulations=["Standard customs apply"],
                health_requirements=["Check requirements"],
            ),
            transportation=TransportationLaws(
                public_transport_rules=["Follow local rules"],
                ride_sharing_regulations=["Use official services"],
                walking_regulations=["Use crosswalks"],
            ),
            accommodation=AccommodationRegulations(
                hotel_registration=["ID required"],
                short_term_rentals=["Check regulations"],
                guest_obligations=["Respect property"],
                tourist_tax=["May apply"],
            ),
            public_behavior=BehaviorRestrictions(
                noise_ordinances=["Respect quiet hours"],
                alcohol_restrictions=["Check local laws"],
                smoking_bans=["No smoking indoors"],
                public_display_restrictions=["Be respectful"],
                dress_codes=["Dress appropriately"],
            ),
            photography=PhotographyRules(
                restricted_areas=["Government buildings"],
                permits_required=["Commercial use"],
                privacy_laws=["Respect privacy"],
                commercial_restrictions=["Get permission"],
            ),
            shopping=CommercialRegulations(
                tax_refunds=["Keep receipts"],
                customs_declaration=["Declare purchases"],
                restricted_items=["Check prohibited items"],
                bargaining_etiquette=["Respect local customs"],
            ),
            penalties=ViolationPenalties(
                common_violations=[],
                contact_authorities=["Local police"],
                emergency_procedures=["Follow local laws and regulations", "Contact embassy"],
                embassy_contacts=["Check embassy info"],
            ),
        )


# ---------- Culture ----------


class DressCodeGuidelines(TolerantModel):
    general: str = "Dress appropriately for the climate and culture"
    religious: str = "Conservative dress required at religious sites"
    business: str = "Business attire for professional settings"
    formal: str = "Formal wear for special occasions"
    beach: str = "Swimwear appropriate at beaches and pools"


class CulturalNorms(TolerantModel):
    etiquette: list[str] = ["Be respectful and polite", "Learn basic greetings"]
    taboos: list[str] = ["Avoid offensive gestures", "Respect religious customs"]
    dress_code: DressCodeGuidelines = Field(default_factory=DressCodeGuidelines)
    religious_considerations: list[str] = ["Respect religious practices", "Follow site-specific rules"]
    business_culture: list[str] = ["Punctuality is important", "Exchange business cards respectfully"]
    social_interactions: list[str] = ["Maintain appropriate personal space", "Use polite language"]
    gift_giving: list[str] = ["Small gifts are appreciated", "Avoid expensive items"]
    dining_etiquette: list[str] = ["Wait for host to begin", "Use appropriate utensils"]

    @classmethod
    def minimal(cls) -> "CulturalNorms":
        return cls(
            etiquette=["Be respectful"],
            taboos=["Avoid offensive behavior"],
            dress_code=DressCodeGuidelines(
                general="Dress appropriately",
                religious="Conservative dress",
                business="Business attire",
                formal="Formal wear",
                beach="Appropriate swimwear",
            ),
            religious_considerations=["Respect religious practices"],
            business_culture=["Be professional"],
            social_interactions=["Be polite"],
            gift_giving=["Small gifts acceptable"],
            dining_etiquette=["Follow local customs"],
        )


# ---------- Places and things to do ----------


class Attraction(TolerantModel):
    id: str = ""
    name: str
    type: str = "attraction"
    coordinates: Coordinates = Field(default_factory=Coordinates)
    description: str = ""
    opening_hours: str = "Check locally"
    entry_fee: str = "Varies"
    cultural_significance: str = ""
    tips: list[str] = []
    photo_restrictions: list[str] = []
    dress_requirements: list[str] = []


class Restaurant(TolerantModel):
    id: str = ""
    name: str
    type: str = "restaurant"
    cuisine: str = "Local"
    coordinates: Coordinates = Field(default_factory=Coordinates)
    price_range: str = "Varies"
    specialties: list[str] = []
    cultural_notes: list[str] = []
    reservation_required: bool = False
    dress_code: str = ""


class SeasonalEvent(TolerantModel):
    id: str = ""
    name: str
    type: Literal["festival", "holiday", "cultural", "religious", "seasonal"] = "cultural"
    dates: str = ""
    description: str = ""
    cultural_significance: str = ""
    participation_guidelines: list[str] = []
    restrictions: list[str] = []


class TransportOption(TolerantModel):
    type: str
    description: str = ""
    cost: str = "Varies"
    availability: str = "Check locally"
    cultural_notes: list[str] = []
    legal_requirements: list[str] = []


# ---------- Economy, climate, language ----------


class AccommodationCosts(TolerantModel):
    budget: float = 25
    mid_range: float = 75
    luxury: float = 200


class MealCosts(TolerantModel):
    street_food: float = 5
    restaurant: float = 15
    fine_dining: float = 50


class TransportCosts(TolerantModel):
    local: float = 2
    taxi: float = 10
    long_distance: float = 25


class EconomicData(TolerantModel):
    average_daily_cost: float = 50
    accommodation_costs: AccommodationCosts = Field(default_factory=AccommodationCosts)
    meal_costs: MealCosts = Field(default_factory=MealCosts)
    transport_costs: TransportCosts = Field(default_factory=TransportCosts)
    tipping_guide: str = "10-15% in restaurants, round up for services"


class TemperatureRange(TolerantModel):
    high: float
    low: float


def _default_temperatures() -> dict[str, TemperatureRange]:
    return {
        "January": TemperatureRange(high=20, low=10),
        "July": TemperatureRange(high=30, low=20),
    }


class Climate(TolerantModel):
    average_temperature: dict[str, TemperatureRange] = Field(default_factory=_default_temperatures)
    rainy_seasons: list[str] = ["June-September"]
    best_weather: list[str] = ["March-May", "October-November"]
    packing_recommendations: dict[str, list[str]] = {
        "Summer": ["Light clothing", "Sun protection"],
        "Winter": ["Warm layers", "Rain gear"],
    }

    @classmethod
    def minimal(cls) -> "Climate":
        return cls(average_temperature={}, rainy_seasons=[], best_weather=["Year-round"], packing_recommendations={})


class Phrase(TolerantModel):
    english: str
    local: str
    pronunciation: str = ""
    usage: str = ""


def _default_phrases() -> list[Phrase]:
    return [
        Phrase(english="Hello", local="Hello", pronunciation="heh-lo", usage="General greeting"),
        Phrase(english="Thank you", local="Thank you", pronunciation="thank you", usage="Expressing gratitude"),
    ]


class LanguageGuide(TolerantModel):
    primary_language: str = "English"
    essential_phrases: list[Phrase] = Field(default_factory=_default_phrases)
    communication_tips: list[str] = ["Speak slowly and clearly", "Use gestures to help communicate"]
    writing_system: str = "Latin"

    @classmethod
    def minimal(cls, language: str = "English") -> "LanguageGuide":
        return cls(primary_language=language, essential_phrases=[], communication_tips=["Speak slowly"])


# ---------- Metadata and the record itself ----------


class DestinationMetadata(TolerantModel):
    last_updated: datetime = Field(default_factory=utcnow)
    data_quality: QualityMetrics = Field(default_factory=QualityMetrics)
    user_feedback: list[UserRating] = []
    sources: list[DataSource] = []
    update_frequency: str = "daily"
    expert_reviewed: bool = False
    community_validated: bool = False


class EnhancedDestination(TolerantModel):
    """A fully-shaped destination record."""

    # Identity
    id: str = ""
    name: str = ""
    country: str = "Unknown"
    region: str = "Unknown"
    coordinates: Coordinates = Field(default_factory=Coordinates)

    # Core travel attributes
    population: int = 0
    timezone: str = "UTC"
    languages: list[str] = ["English"]
    currency: str = "USD"
    safety_rating: float = Field(default=7.0, ge=0, le=10)
    tourist_friendly: float = Field(default=7.0, ge=0, le=10)
    cost_level: CostLevel = "moderate"
    best_time_to_visit: list[str] = ["Year-round"]
    average_stay: int = 3
    summary: str = ""

    # Legal and cultural intelligence
    travel_laws: TravelLaws = Field(default_factory=TravelLaws)
    cultural_norms: CulturalNorms = Field(default_factory=CulturalNorms)

    # Dynamic content
    attractions: list[Attraction] = []
    restaurants: list[Restaurant] = []
    events: list[SeasonalEvent] = []
    transportation: list[TransportOption] = []

    economic_data: EconomicData = Field(default_factory=EconomicData)
    climate: Climate = Field(default_factory=Climate)
    language_guide: LanguageGuide = Field(default_factory=LanguageGuide)

    metadata: DestinationMetadata = Field(default_factory=DestinationMetadata)

    @property
    def display_name(self) -> str:
        return f"{self.name}, {self.country}"

    def severe_violations(self) -> list[Violation]:
        return [v for v in self.travel_laws.penalties.common_violations if v.severity == "severe"]
