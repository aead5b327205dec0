from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from travel_kb.schemas.destination import EnhancedDestination

Priority = Literal["high", "medium", "low"]
AlertSeverity = Literal["info", "warning", "critical"]
TipImportance = Literal["essential", "important", "nice-to-know"]
ResponseMode = Literal["live", "demo", "error"]


class BudgetRange(BaseModel):
    min: float = 0
    max: float = 0
    currency: str = "USD"


class SearchContext(BaseModel):
    travel_style: str | None = None
    budget: BudgetRange | None = None
    interests: list[str] = []
    cultural_preferences: list[str] = []
    legal_concerns: list[str] = []


class SearchFilters(BaseModel):
    countries: list[str] = []
    languages: list[str] = []
    safety_level: float | None = None
    cost_level: list[str] = []


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    user_id: str | None = None
    context: SearchContext = Field(default_factory=SearchContext)
    filters: SearchFilters = Field(default_factory=SearchFilters)
    limit: int = Field(default=10, ge=1, le=50)


class PersonalizedRecommendation(BaseModel):
    type: Literal["attraction", "restaurant", "activity", "cultural", "legal"]
    title: str
    description: str
    reasoning: str
    confidence: float
    priority: Priority


class LegalAlert(BaseModel):
    severity: AlertSeverity
    title: str
    description: str
    consequences: str
    recommendations: list[str] = []


class CulturalTip(BaseModel):
    category: str
    tip: str
    importance: TipImportance
    context: str


class EmergencyContacts(BaseModel):
    police: str = "911"
    medical: str = "911"
    embassy: str = "Check embassy website"


class HealthInfo(BaseModel):
    vaccinations: list[str] = []
    health_risks: list[str] = []
    medical_facilities: str = "Good medical facilities available"


class PracticalInformation(BaseModel):
    visa_requirements: str = "Check visa requirements"
    currency_info: str = "Local currency"
    language_help: list[str] = []
    emergency_contacts: EmergencyContacts = Field(default_factory=EmergencyContacts)
    health_info: HealthInfo = Field(default_factory=HealthInfo)


class SearchData(BaseModel):
    destination: EnhancedDestination | None = None
    recommendations: list[PersonalizedRecommendation] = []
    legal_alerts: list[LegalAlert] = []
    cultural_tips: list[CulturalTip] = []
    practical_info: PracticalInformation = Field(default_factory=PracticalInformation)
    similar_destinations: list[EnhancedDestination] = []


class SearchMetadata(BaseModel):
    confidence: float = 0.0
    search_time_ms: float = 0.0
    data_quality: float = 0.0
    sources: list[str] = []
    last_updated: datetime | None = None


class SearchStatus(BaseModel):
    code: int = 200
    message: str = "Search completed successfully"
    mode: ResponseMode = "live"
    warnings: list[str] = []


class SearchResponse(BaseModel):
    data: SearchData = Field(default_factory=SearchData)
    metadata: SearchMetadata = Field(default_factory=SearchMetadata)
    status: SearchStatus = Field(default_factory=SearchStatus)
