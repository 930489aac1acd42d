"""
Company Enrichment - Pydantic Data Schemas

Job, trace, page, contact, search, extraction and consolidated-record models
shared by every pipeline stage.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStep(str, Enum):
    """The seven pipeline stages, declared in execution order."""
    DOMAIN_VALIDATION = "domain_validation"
    WEBSITE_SCRAPING = "website_scraping"
    SEARCH_ENRICHMENT = "search_enrichment"
    STRUCTURED_EXTRACTION = "structured_extraction"
    DATA_CONSOLIDATION = "data_consolidation"
    DATABASE_UPSERT = "database_upsert"
    MARKETING_TOOLS = "marketing_tools"


class PageCategory(str, Enum):
    HOME = "home"
    ABOUT = "about"
    CONTACT = "contact"
    SERVICES = "services"
    PRODUCTS = "products"
    TEAM = "team"
    BLOG = "blog"
    OTHER = "other"


class ContactSource(str, Enum):
    TEL = "tel"
    TEXT = "text"
    SCHEMA = "schema"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# --- requests & jobs -------------------------------------------------------


class EnrichmentRequest(BaseModel):
    domain: str = Field(..., description="Company domain or URL to enrich")
    priority: Priority = Field(Priority.MEDIUM)
    force_refresh: bool = Field(False, description="Ignore cached results for the same domain")
    company_name: Optional[str] = Field(None, description="Optional hint used for search queries")

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v):
        if not v or not v.strip():
            raise ValueError("Domain cannot be empty")
        return v.strip()


class EnrichmentJob(BaseModel):
    id: str
    domain: str
    normalized_domain: str
    status: JobStatus = JobStatus.PENDING
    priority: Priority = Priority.MEDIUM
    progress: int = Field(0, ge=0, le=100)
    current_step: Optional[PipelineStep] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


# --- tracing ---------------------------------------------------------------


class StepTrace(BaseModel):
    step: PipelineStep
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    input_data: Optional[Any] = None
    output_data: Optional[Any] = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    degraded: bool = False


class QualityMetrics(BaseModel):
    confidence_score: float = 0.0
    data_completeness: float = 0.0
    validation_errors: List[str] = Field(default_factory=list)
    accuracy_issues: List[str] = Field(default_factory=list)


class PerformanceMetrics(BaseModel):
    total_duration_ms: int = 0
    step_durations: Dict[str, int] = Field(default_factory=dict)


class EnrichmentTrace(BaseModel):
    id: str
    job_id: str
    domain: str
    normalized_domain: str
    status: JobStatus = JobStatus.IN_PROGRESS
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    steps: Dict[PipelineStep, StepTrace] = Field(
        default_factory=lambda: {s: StepTrace(step=s) for s in PipelineStep}
    )
    quality_metrics: QualityMetrics = Field(default_factory=QualityMetrics)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    job_dir: Optional[str] = None


class TraceProgress(BaseModel):
    trace_id: str
    current_step: Optional[PipelineStep] = None
    progress: int = 0
    eta_ms: Optional[int] = None
    current_operation: str = ""
    completed_steps: int = 0
    total_steps: int = len(PipelineStep)
    step_details: Dict[str, StepStatus] = Field(default_factory=dict)


# --- crawl -----------------------------------------------------------------


class ContactCandidate(BaseModel):
    """A phone number that survived the plausibility filter."""
    model_config = ConfigDict(frozen=True)

    raw_value: str
    normalized_value: str = Field(..., description="Digits with an optional leading '+'")
    source: ContactSource
    snippet: Optional[str] = Field(None, description="Surrounding visible text (text source only)")


class Signal(BaseModel):
    """Uniform output of a signal-extractor strategy."""
    model_config = ConfigDict(frozen=True)

    value: str
    source: str
    confidence_hint: float = Field(0.5, ge=0.0, le=1.0)


class PageData(BaseModel):
    title: str = ""
    description: str = ""
    content: str = ""
    technologies: List[str] = Field(default_factory=list)
    social_links: Dict[str, str] = Field(default_factory=dict)
    keywords: List[str] = Field(default_factory=list)
    emails: List[str] = Field(default_factory=list)
    phones: List[ContactCandidate] = Field(default_factory=list)


class PageRecord(BaseModel):
    url: str
    category: PageCategory = PageCategory.OTHER
    status: str = Field("success", description="success | failed")
    method: str = Field("static", description="static | headless")
    http_status: Optional[int] = None
    duration_ms: int = 0
    error: Optional[str] = None
    escalation_reasons: List[str] = Field(default_factory=list)
    extracted_data: PageData = Field(default_factory=PageData)

    @property
    def ok(self) -> bool:
        return self.status == "success"


class DiscoverySummary(BaseModel):
    base_url: str
    discovered: List[str] = Field(default_factory=list)
    categorized: Dict[PageCategory, List[str]] = Field(default_factory=dict)
    prioritized: List[str] = Field(default_factory=list)
    sitemap_urls: List[str] = Field(default_factory=list)
    fetch_count: int = 0
    duration_ms: int = 0


class WebsiteScrapeData(BaseModel):
    url: str
    title: str = ""
    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    content: str = ""
    social_links: Dict[str, str] = Field(default_factory=dict)
    emails: List[str] = Field(default_factory=list)
    phones: List[ContactCandidate] = Field(default_factory=list)
    email_counts: Dict[str, int] = Field(default_factory=dict)
    phone_counts: Dict[str, int] = Field(default_factory=dict)
    technologies: List[str] = Field(default_factory=list)
    page_results: List[PageRecord] = Field(default_factory=list)
    discovery: Optional[DiscoverySummary] = None
    status: str = "success"
    error: Optional[str] = None
    scraped_at: datetime = Field(default_factory=utcnow)

    @property
    def successful_pages(self) -> List[PageRecord]:
        return [p for p in self.page_results if p.ok]


# --- search ----------------------------------------------------------------


class SearchResultItem(BaseModel):
    title: str = ""
    link: str
    snippet: str = ""
    source: str = "Other"
    relevance: float = Field(0.0, ge=0.0, le=1.0)


class QueryOutcome(BaseModel):
    query: str
    success: bool
    result_count: int = 0
    error: Optional[str] = None
    duration_ms: int = 0
    results: List[SearchResultItem] = Field(default_factory=list)


class SearchSignals(BaseModel):
    employee_count: Optional[str] = None
    funding: Optional[str] = None
    news: List[str] = Field(default_factory=list)
    reviews: List[str] = Field(default_factory=list)


class SearchEnrichment(BaseModel):
    company_name: str
    results: List[SearchResultItem] = Field(default_factory=list)
    extracted: SearchSignals = Field(default_factory=SearchSignals)
    queries: List[QueryOutcome] = Field(default_factory=list)
    searched_at: datetime = Field(default_factory=utcnow)


# --- structured extraction -------------------------------------------------


class Executive(BaseModel):
    name: str = ""
    title: str = ""
    linkedin: str = ""
    email: str = ""


class ExtractedCompany(BaseModel):
    legal_name: str = ""
    dba: List[str] = Field(default_factory=list)
    industry: str = ""
    description: str = ""


class ExtractedBusiness(BaseModel):
    target_customers: List[str] = Field(default_factory=list)
    funding: List[str] = Field(default_factory=list)
    revenue: str = ""
    founded: Optional[int] = None
    categories: List[str] = Field(default_factory=list)


class ExtractedPeople(BaseModel):
    executives: List[Executive] = Field(default_factory=list)
    employee_count: str = ""


class ExtractedTechnology(BaseModel):
    platforms: List[str] = Field(default_factory=list)
    tools: List[str] = Field(default_factory=list)
    infrastructure: List[str] = Field(default_factory=list)


class ExtractedMarket(BaseModel):
    target_customers: List[str] = Field(default_factory=list)
    competitors: List[str] = Field(default_factory=list)
    geographic: List[str] = Field(default_factory=list)


class ExtractionResult(BaseModel):
    company: ExtractedCompany = Field(default_factory=ExtractedCompany)
    business: ExtractedBusiness = Field(default_factory=ExtractedBusiness)
    people: ExtractedPeople = Field(default_factory=ExtractedPeople)
    technology: ExtractedTechnology = Field(default_factory=ExtractedTechnology)
    market: ExtractedMarket = Field(default_factory=ExtractedMarket)


class ExtractionOutcome(BaseModel):
    model: str = ""
    prompt: str = ""
    raw_response: Optional[str] = None
    parsed: Optional[ExtractionResult] = None
    parsing_errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0

    @property
    def degraded(self) -> bool:
        return self.parsed is None


# --- consolidated record ---------------------------------------------------


class SocialMedia(BaseModel):
    linkedin: Optional[str] = None
    twitter: Optional[str] = None
    facebook: Optional[str] = None
    instagram: Optional[str] = None
    youtube: Optional[str] = None


class ContactInfo(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    social_media: SocialMedia = Field(default_factory=SocialMedia)


class BusinessInfo(BaseModel):
    industry: str = ""
    sector: Optional[str] = None
    employee_count: Optional[int] = None
    employee_range: Optional[str] = None
    revenue: Optional[str] = None
    funding: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    is_public: bool = False
    stock_symbol: Optional[str] = None


class TechnologyInfo(BaseModel):
    platforms: List[str] = Field(default_factory=list)
    tools: List[str] = Field(default_factory=list)
    infrastructure: List[str] = Field(default_factory=list)


class PeopleInfo(BaseModel):
    executives: List[Executive] = Field(default_factory=list)
    total_employees: Optional[int] = None


class MarketInfo(BaseModel):
    target_customers: List[str] = Field(default_factory=list)
    competitors: List[str] = Field(default_factory=list)
    geographic: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)


class ConsolidatedCompanyRecord(BaseModel):
    company_name: str = ""
    legal_name: Optional[str] = None
    dba: List[str] = Field(default_factory=list)
    description: str = ""
    founded: Optional[int] = None
    website: str
    contact: ContactInfo = Field(default_factory=ContactInfo)
    business: BusinessInfo = Field(default_factory=BusinessInfo)
    technology: TechnologyInfo = Field(default_factory=TechnologyInfo)
    people: PeopleInfo = Field(default_factory=PeopleInfo)
    market: MarketInfo = Field(default_factory=MarketInfo)
    sources: Dict[str, bool] = Field(default_factory=dict)


# --- validation ------------------------------------------------------------


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    issue: str
    severity: Severity
    suggestion: Optional[str] = None
    data: Optional[Any] = None


class QualityReport(BaseModel):
    score: int = Field(..., ge=0, le=100)
    is_valid: bool
    confidence: str = Field(..., description="high | medium | low")
    issues: List[ValidationIssue] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


# --- persistence & downstream ---------------------------------------------


class DatabaseResult(BaseModel):
    success: bool = True
    operation: str = Field(..., description="create | update")
    table: str = "companies"
    record_id: int
    industry_ids: List[int] = Field(default_factory=list)
    category_ids: List[int] = Field(default_factory=list)


class ContactPriority(BaseModel):
    name: str
    title: str
    level: str
    email: Optional[str] = None
    linkedin: Optional[str] = None


class MarketingData(BaseModel):
    lead_score: int = 0
    target_segments: List[str] = Field(default_factory=list)
    tech_based_targeting: List[str] = Field(default_factory=list)
    competitor_analysis: List[str] = Field(default_factory=list)
    contact_priorities: List[ContactPriority] = Field(default_factory=list)


# --- result ----------------------------------------------------------------


class ResultSources(BaseModel):
    website: Optional[WebsiteScrapeData] = None
    search: Optional[SearchEnrichment] = None
    extraction: Optional[ExtractionResult] = None


class ResultMetadata(BaseModel):
    confidence: float = 0.0
    conflicts: List[str] = Field(default_factory=list)
    trace_id: Optional[str] = None
    trace_dir: Optional[str] = None
    cached: bool = False


class EnrichmentResult(BaseModel):
    job_id: str
    domain: str
    normalized_domain: str
    status: JobStatus
    progress: int = Field(0, ge=0, le=100)
    data: Optional[ConsolidatedCompanyRecord] = None
    marketing_data: Optional[MarketingData] = None
    database_result: Optional[DatabaseResult] = None
    quality: Optional[QualityReport] = None
    error: Optional[str] = None
    duration_ms: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    sources: ResultSources = Field(default_factory=ResultSources)
    metadata: ResultMetadata = Field(default_factory=ResultMetadata)
