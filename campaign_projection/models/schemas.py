"""
Pydantic contract models for the campaign projection engine.

This module provides type-safe validation for the two boundaries of the engine:

- Input: CampaignRecord (one historical dispatch from the record store) and
  ProjectionQuery (the partially filled campaign form).
- Output: FieldProjection, AllProjectionsResult, CausalAnalysisResult,
  FieldSuggestion, Alternative and DatasetStats, handed read-only to the UI
  consumer.

CampaignRecord accepts both camelCase field names and the column headers of the
source spreadsheet as aliases. Columns the engine does not know are kept in
`extras` rather than rejected. Numeric columns are parsed leniently: currency
symbols, percent signs and either decimal convention are accepted, and an
unparseable number becomes None instead of failing the record.

All models use Pydantic v2 syntax.
"""

import math
import re
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from campaign_projection.models.enums import (
    AlternativeType,
    CATEGORICAL_DIMENSIONS,
    DataQuality,
    Dimension,
    ImpactDirection,
    MatchLevel,
    ProjectableMetric,
    ProjectionMethod,
    RiskLevel,
)


# =============================================================================
# Lenient Value Parsing
# =============================================================================

_NUMBER_NOISE = re.compile(r"[^\d,.\-]")
# "120.000", "1.234.567": dots as thousands separators
_DOT_GROUPED = re.compile(r"^-?[1-9]\d{0,2}(\.\d{3})+$")
# "1,234,567": two or more comma groups; a single comma is a decimal mark
_COMMA_GROUPED = re.compile(r"^-?[1-9]\d{0,2}(,\d{3}){2,}$")


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a loosely formatted number.

    Accepts ints/floats and strings such as "R$ 1.234,56", "1,234.56",
    "12,5%", "120.000" or " 42 ". With both separators present the right-most
    one is the decimal mark. A lone comma is a decimal mark; dots that group
    digits in threes are thousands separators (Brazilian convention).

    Args:
        value: Raw cell value.

    Returns:
        The parsed float, or None when the value is blank or not a number.

    Example:
        >>> parse_number("R$ 1.234,56")
        1234.56
        >>> parse_number("12,5%")
        12.5
        >>> parse_number("120.000")
        120000.0
        >>> parse_number("n/a") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None

    text = _NUMBER_NOISE.sub("", str(value))
    if not text or text in {"-", ".", ","}:
        return None

    if _DOT_GROUPED.match(text):
        text = text.replace(".", "")
    elif _COMMA_GROUPED.match(text):
        text = text.replace(",", "")
    elif "," in text and "." in text:
        # The right-most separator is the decimal one
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".")

    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _coerce_label(value: Any) -> Optional[str]:
    """Turn a raw categorical cell into a trimmed string, or None if blank."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float) and not math.isfinite(value):
        return None
    text = str(value).strip()
    return text or None


# =============================================================================
# Input Models
# =============================================================================


class CampaignRecord(BaseModel):
    """
    One historical campaign dispatch as supplied by the record store.

    Every field is optional; validation never rejects a record for a missing
    value. The DataProcessor decides whether a record is usable (it needs a
    parseable dispatch date). Unknown columns are preserved in `extras`.
    """
    model_config = ConfigDict(
        extra='allow',
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "id": "cmp-0001",
                "name": "B2C_EMAIL_RETENTION_0105",
                "dispatchDate": "2024-01-05",
                "businessUnit": "B2C",
                "segment": "Retention",
                "channel": "E-mail",
                "volume": 120000,
                "deliveryRate": "96,5%",
                "unitsGenerated": 240,
            }
        }
    )

    # -------------------------------------------------------------------------
    # Identity and timing
    # -------------------------------------------------------------------------
    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "ID"))
    name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("name", "activityName", "Activity name / Taxonomia"),
    )
    dispatchDate: Optional[Union[datetime, date, str]] = Field(
        default=None,
        validation_alias=AliasChoices("dispatchDate", "Data de Disparo"),
    )
    dispatchTime: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("dispatchTime", "Horário de Disparo"),
    )

    # -------------------------------------------------------------------------
    # Categorical dimensions
    # -------------------------------------------------------------------------
    businessUnit: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("businessUnit", "BU", "bu")
    )
    segment: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("segment", "Segmento")
    )
    channel: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("channel", "Canal")
    )
    journey: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("journey", "jornada", "Jornada")
    )
    creditProfile: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("creditProfile", "Perfil de Crédito")
    )
    offer: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("offer", "Oferta")
    )
    promotional: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("promotional", "Promocional")
    )
    partner: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("partner", "Parceiro")
    )
    subgroup: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("subgroup", "Subgrupos")
    )
    acquisitionStage: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("acquisitionStage", "Etapa de aquisição")
    )
    product: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("product", "Produto")
    )

    # -------------------------------------------------------------------------
    # Volumes
    # -------------------------------------------------------------------------
    volume: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("volume", "Base Total")
    )
    deliverableBase: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("deliverableBase", "Base Acionável")
    )
    proposals: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("proposals", "Propostas")
    )
    approvals: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("approvals", "Aprovados")
    )
    unitsGenerated: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("unitsGenerated", "Cartões Gerados")
    )

    # -------------------------------------------------------------------------
    # Funnel rates (percentage points)
    # -------------------------------------------------------------------------
    deliveryRate: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("deliveryRate", "Taxa de Entrega")
    )
    openRate: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("openRate", "Taxa de Abertura")
    )
    proposalRate: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("proposalRate", "Taxa de Proposta")
    )
    approvalRate: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("approvalRate", "Taxa de Aprovação")
    )
    finalizationRate: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("finalizationRate", "Taxa de Finalização")
    )
    conversionRate: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("conversionRate", "Taxa de Conversão")
    )

    # -------------------------------------------------------------------------
    # Costs
    # -------------------------------------------------------------------------
    offerCost: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("offerCost", "Custo Total da Oferta")
    )
    channelCost: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("channelCost", "Custo total canal")
    )
    totalCost: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("totalCost", "Custo Total Campanha")
    )
    cac: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("cac", "CAC")
    )

    @field_validator(
        "volume", "deliverableBase", "proposals", "approvals", "unitsGenerated",
        "deliveryRate", "openRate", "proposalRate", "approvalRate",
        "finalizationRate", "conversionRate",
        "offerCost", "channelCost", "totalCost", "cac",
        mode="before",
    )
    @classmethod
    def parse_numeric(cls, value: Any) -> Optional[float]:
        return parse_number(value)

    @field_validator(
        "id", "name", "dispatchTime",
        *(d.value for d in CATEGORICAL_DIMENSIONS),
        mode="before",
    )
    @classmethod
    def parse_label(cls, value: Any) -> Optional[str]:
        if isinstance(value, time):
            return value.strftime("%H:%M")
        return _coerce_label(value)

    @field_validator("dispatchDate", mode="before")
    @classmethod
    def blank_date_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def extras(self) -> Dict[str, Any]:
        """Pass-through columns the engine does not interpret."""
        return dict(self.model_extra or {})

    def dimension_value(self, dimension: Dimension) -> Optional[str]:
        """Raw (un-normalized) value of a categorical dimension."""
        if dimension is Dimension.TEMPORAL:
            return None
        return getattr(self, dimension.value)


class ProjectionQuery(BaseModel):
    """
    A partially filled campaign form used as a projection query.

    Only specified dimensions participate in similarity scoring. The query is
    caller-owned; the engine never mutates it.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        frozen=True,
        json_schema_extra={
            "example": {
                "businessUnit": "B2C",
                "segment": "Retention",
                "channel": "SMS",
                "baseVolume": 50000,
            }
        }
    )

    businessUnit: Optional[str] = Field(default=None, validation_alias=AliasChoices("businessUnit", "bu"))
    segment: Optional[str] = Field(default=None, validation_alias=AliasChoices("segment", "segmento"))
    channel: Optional[str] = Field(default=None, validation_alias=AliasChoices("channel", "canal"))
    journey: Optional[str] = Field(default=None, validation_alias=AliasChoices("journey", "jornada"))
    creditProfile: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("creditProfile", "perfilCredito")
    )
    offer: Optional[str] = Field(default=None, validation_alias=AliasChoices("offer", "oferta"))
    promotional: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("promotional", "promocional")
    )
    partner: Optional[str] = Field(default=None, validation_alias=AliasChoices("partner", "parceiro"))
    subgroup: Optional[str] = Field(default=None, validation_alias=AliasChoices("subgroup", "subgrupo"))
    acquisitionStage: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("acquisitionStage", "etapaAquisicao")
    )
    product: Optional[str] = Field(default=None, validation_alias=AliasChoices("product", "produto"))

    baseVolume: Optional[float] = Field(
        default=None,
        ge=0.0,
        validation_alias=AliasChoices("baseVolume", "volume"),
        description="Planned number of recipients (caller input, never projected)",
    )
    dispatchDate: Optional[Union[date, str]] = Field(
        default=None,
        validation_alias=AliasChoices("dispatchDate", "dataDisparo"),
        description="Planned dispatch date (weekday baseline for timing alternatives)",
    )
    dispatchTime: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("dispatchTime", "horarioDisparo"),
        description="Planned dispatch time, HH:MM (time slot baseline for timing alternatives)",
    )

    @field_validator(*(d.value for d in CATEGORICAL_DIMENSIONS), mode="before")
    @classmethod
    def parse_label(cls, value: Any) -> Optional[str]:
        return _coerce_label(value)

    @field_validator("baseVolume", mode="before")
    @classmethod
    def parse_volume(cls, value: Any) -> Optional[float]:
        return parse_number(value)

    def specified_dimensions(self) -> Dict[Dimension, str]:
        """Categorical dimensions the query fills in, in declaration order."""
        specified: Dict[Dimension, str] = {}
        for dimension in CATEGORICAL_DIMENSIONS:
            value = getattr(self, dimension.value)
            if value:
                specified[dimension] = value
        return specified

    def without(self, *dimensions: Dimension) -> "ProjectionQuery":
        """Copy of the query with the given dimensions cleared."""
        return self.model_copy(update={d.value: None for d in dimensions})


# =============================================================================
# Output Models - Projection Building Blocks
# =============================================================================


class ProjectionInterval(BaseModel):
    """Confidence interval around a projected value."""
    min: float = Field(..., description="Lower bound (clipped to the metric's valid range)")
    max: float = Field(..., description="Upper bound (clipped to the metric's valid range)")


class CampaignReference(BaseModel):
    """A historical campaign shown as evidence for a projection."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "cmp-0042",
                "name": "B2C_SMS_RETENTION_0312",
                "dispatchDate": "2024-03-12",
                "metricValue": 9.8,
                "similarityScore": 96.4,
            }
        }
    )

    id: str = Field(..., description="Record identifier")
    name: str = Field(..., description="Campaign name, or the id when unnamed")
    dispatchDate: date = Field(..., description="Dispatch date")
    metricValue: Optional[float] = Field(default=None, description="Observed value of the projected metric")
    similarityScore: float = Field(..., ge=0.0, le=100.0, description="Similarity to the query (0-100)")


class CausalFactor(BaseModel):
    """
    A dimension value associated with a shift in the target metric.

    The attribution is associational: it describes how the metric differs
    between historical groups, not a guaranteed causal effect.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "feature": "channel",
                "value": "sms",
                "direction": "positive",
                "impactPercent": 33.3,
                "explanation": "channel \"sms\" is associated with 33.3% higher Conversion Rate",
                "shapleyValue": 0.82,
                "isConfounder": False,
            }
        }
    )

    feature: str = Field(..., description="Dimension name")
    value: str = Field(..., description="Normalized dimension value")
    direction: ImpactDirection = Field(..., description="Sign of the impact")
    impactPercent: float = Field(..., description="Signed impact vs the group mean, in percent")
    explanation: str = Field(..., description="One-line reason")
    shapleyValue: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Approximate share of metric variance attributed to the dimension",
    )
    isConfounder: bool = Field(default=False, description="Whether the dimension is flagged as a confounder")


class CorrelationFactor(BaseModel):
    """Signed association strength of a dimension with the target metric."""
    feature: str
    correlation: float = Field(..., ge=-1.0, le=1.0)


class ProjectionExplanation(BaseModel):
    """Structured human-readable rationale of a projection."""
    summary: str = Field(..., description="Data quality + match description + sample size")
    causalFactors: List[CausalFactor] = Field(default_factory=list)
    correlationFactors: List[CorrelationFactor] = Field(default_factory=list)
    timeDecay: str = Field(..., description="Plain-language temporal weighting policy")
    sampleSize: int = Field(..., ge=0)
    dataQuality: DataQuality
    matchLevel: MatchLevel
    matchPercentage: int = Field(..., ge=0, le=100)
    disclaimer: str = Field(
        default="Factors are associations observed in historical campaigns, not guaranteed causal effects.",
    )


class ProjectionMetadata(BaseModel):
    """Bookkeeping attached to every projection."""
    computedAt: datetime
    version: str = "2.0"
    funnelAdjusted: bool = Field(
        default=False,
        description="True when the funnel-consistency pass rewrote the value",
    )


class FieldProjection(BaseModel):
    """
    Projection of a single metric for a query.

    Either fully computed or the defined empty projection (value 0,
    confidence 0, method fallback); never partially populated.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "field": "conversionRate",
                "projectedValue": 9.95,
                "confidence": 72,
                "interval": {"min": 9.4, "max": 10.5},
                "method": "population_average",
                "similarCampaigns": [],
            }
        }
    )

    field: ProjectableMetric
    projectedValue: float
    confidence: int = Field(..., ge=0, le=100)
    interval: ProjectionInterval
    method: ProjectionMethod
    explanation: ProjectionExplanation
    similarCampaigns: List[CampaignReference] = Field(default_factory=list)
    metadata: ProjectionMetadata


class AllProjectionsResult(BaseModel):
    """Projections for every metric, after the funnel-consistency pass."""
    projections: Dict[ProjectableMetric, FieldProjection]
    overallConfidence: int = Field(..., ge=0, le=100)
    totalSampleSize: int = Field(..., ge=0)
    matchLevel: MatchLevel
    computedAt: datetime


# =============================================================================
# Output Models - Causal Analysis
# =============================================================================


class FeatureImportance(BaseModel):
    """Attribution of one dimension within a matched group."""
    feature: str
    value: Optional[str] = Field(default=None, description="Value whose partition defines the impact")
    impactPercent: float = Field(..., description="Signed partition mean vs group mean, in percent")
    importance: float = Field(..., ge=0.0, le=100.0, description="Shapley-style share of variance, in percent")
    rank: int = Field(..., ge=1, description="1 = largest absolute impact")


class InterventionEffect(BaseModel):
    """Expected metric change when one dimension takes another observed value."""
    feature: str
    fromValue: str
    toValue: str
    expectedChange: float = Field(..., description="Relative change of the metric, in percent")
    confidence: float = Field(..., ge=0.0, le=1.0)
    sampleSizeFrom: int = Field(..., ge=0)
    sampleSizeTo: int = Field(..., ge=0)


class CausalAnalysisResult(BaseModel):
    """Heuristic, associational driver analysis for one metric."""
    targetMetric: ProjectableMetric
    sampleSize: int = Field(default=0, ge=0)
    shapleyValues: Dict[str, float] = Field(default_factory=dict)
    featureImportance: List[FeatureImportance] = Field(default_factory=list)
    confounders: List[str] = Field(default_factory=list)
    interventionEffects: List[InterventionEffect] = Field(default_factory=list)
    causalFactors: List[CausalFactor] = Field(default_factory=list)
    correlations: Dict[str, float] = Field(
        default_factory=dict,
        description="Signed correlation ratio (eta) of each dimension with the metric",
    )
    note: str = Field(
        default=(
            "Associational analysis over historical campaigns; attributions are "
            "approximate and do not establish causation."
        )
    )


# =============================================================================
# Output Models - Suggestions and Diagnostics
# =============================================================================


class FieldSuggestion(BaseModel):
    """A candidate value for a categorical form field."""
    value: str
    confidence: int = Field(..., ge=0, le=100)
    source: str = Field(..., description="Provenance text")


class DateRange(BaseModel):
    """Inclusive dispatch date range of the processed dataset."""
    start: Optional[date] = None
    end: Optional[date] = None


class DatasetStats(BaseModel):
    """Diagnostics about the processed dataset; not used in projection."""
    totalRecords: int = Field(..., ge=0, description="Processed records inside the temporal window")
    rawRecords: int = Field(default=0, ge=0, description="Records handed to initialize")
    droppedRecords: int = Field(default=0, ge=0, description="Records dropped as malformed")
    dateRange: DateRange = Field(default_factory=DateRange)
    distributions: Dict[str, Dict[str, int]] = Field(
        default_factory=dict,
        description="Per-dimension value counts",
    )
    metricCoverage: Dict[str, int] = Field(
        default_factory=dict,
        description="Number of records carrying each metric",
    )


# =============================================================================
# Output Models - Alternatives
# =============================================================================


class Alternative(BaseModel):
    """
    A variation of the campaign setup that changes one field.

    improvementPercent is the relative gain of the target metric over the
    current setup's projection (a reduction for cost metrics). Like every
    attribution in the engine it is associational.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "channel-sms",
                "type": "channel",
                "title": "Switch channel to SMS",
                "changedField": "channel",
                "previousValue": "Email",
                "newValue": "SMS",
                "improvementPercent": 100.0,
                "metric": "conversionRate",
                "baselineValue": 5.0,
                "expectedValue": 10.0,
                "confidence": 70,
                "riskLevel": "low",
                "sampleSize": 10,
                "appliedChanges": {"channel": "SMS"},
            }
        }
    )

    id: str = Field(..., description="Stable identifier: type plus new value")
    type: AlternativeType
    title: str
    description: str
    changedField: str = Field(..., description="ProjectionQuery field the alternative changes")
    previousValue: Optional[str] = Field(default=None, description="Current value of the field, if set")
    newValue: str
    improvementPercent: float = Field(..., gt=0.0)
    metric: ProjectableMetric
    baselineValue: float = Field(..., ge=0.0, description="Projection for the current setup")
    expectedValue: float = Field(..., ge=0.0, description="Projection with the change applied")
    confidence: int = Field(..., ge=0, le=100)
    riskLevel: RiskLevel
    sampleSize: int = Field(..., ge=0, description="Historical records supporting the new value")
    appliedChanges: Dict[str, str] = Field(default_factory=dict, description="Query update to apply it")
    reason: str = Field(..., description="One-line evidence")
