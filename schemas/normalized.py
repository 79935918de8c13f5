"""
Pydantic schemas for normalized content records with validation.

These are the "proposed records" a content provider produces for each
candidate item before it is compared with the stored record and upserted.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from models.base import CountryPolicyType


def ensure_array(value: Any) -> List[str]:
    """
    Coerce a value to a list of strings.

    LLM output is inconsistent: the same field arrives as a list, a single
    string or an object such as {"restrictions": "..."}.
    """
    if value is None or value == "" or value == {}:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, dict):
        return [str(v).strip() for v in value.values() if v is not None and str(v).strip()]
    return [str(value)]


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


class AirlineCreate(BaseModel):
    """Airline record from the airlines feed"""
    iata_code: str = Field(..., min_length=2, max_length=3)
    icao_code: Optional[str] = Field(None, max_length=4)
    name: str = Field(..., min_length=1, max_length=255)
    country: Optional[str] = None
    active: bool = True

    @field_validator("iata_code")
    @classmethod
    def upper_code(cls, v):
        return v.strip().upper()


class AirportCreate(BaseModel):
    """Airport record from the airports feed"""
    iata_code: str = Field(..., min_length=3, max_length=3)
    name: str = Field(..., min_length=1, max_length=255)
    city: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    timezone: Optional[str] = None

    @field_validator("iata_code")
    @classmethod
    def upper_code(cls, v):
        return v.strip().upper()


class RouteCreate(BaseModel):
    """Route record from the routes file"""
    airline_iata: str = Field(..., min_length=2, max_length=3)
    source_airport: str = Field(..., min_length=3, max_length=4)
    destination_airport: str = Field(..., min_length=3, max_length=4)
    codeshare: bool = False
    stops: int = Field(0, ge=0)
    equipment: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.airline_iata}:{self.source_airport}-{self.destination_airport}"


class PetPolicyCreate(BaseModel):
    """
    Airline pet policy extracted from the airline's official sources.

    Ensures:
    - List fields are always lists of strings
    - Object fields are always dicts
    - Free-text fields are stripped strings or None
    """
    airline_id: str
    pet_types_allowed: List[str] = Field(default_factory=list)
    size_restrictions: Dict[str, Any] = Field(default_factory=dict)
    carrier_requirements: Optional[str] = None
    carrier_requirements_cabin: Optional[str] = None
    carrier_requirements_cargo: Optional[str] = None
    documentation_needed: List[str] = Field(default_factory=list)
    fees: Dict[str, Any] = Field(default_factory=dict)
    temperature_restrictions: Optional[str] = None
    breed_restrictions: List[str] = Field(default_factory=list)
    policy_url: Optional[str] = Field(None, max_length=2048)
    sources: List[str] = Field(default_factory=list)
    raw_api_response: Optional[str] = None

    # Not stored on pet_policies; applied to the airline row
    official_website: Optional[str] = Field(None, exclude=True)

    @field_validator("pet_types_allowed", "documentation_needed", "breed_restrictions", "sources", mode="before")
    @classmethod
    def clean_lists(cls, v):
        return ensure_array(v)

    @field_validator("size_restrictions", "fees", mode="before")
    @classmethod
    def clean_dicts(cls, v):
        if v is None or not isinstance(v, dict):
            return {}
        return v

    @field_validator(
        "carrier_requirements",
        "carrier_requirements_cabin",
        "carrier_requirements_cargo",
        "temperature_restrictions",
        "policy_url",
        mode="before"
    )
    @classmethod
    def clean_strings(cls, v):
        return _clean_text(v)


class CountryPolicyCreate(BaseModel):
    """Country arrival or transit policy"""
    model_config = ConfigDict(use_enum_values=True)

    country_code: str = Field(..., min_length=2, max_length=3)
    policy_type: CountryPolicyType
    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    requirements: List[str] = Field(default_factory=list)
    documentation_needed: List[str] = Field(default_factory=list)
    fees: Dict[str, Any] = Field(default_factory=dict)
    restrictions: Dict[str, Any] = Field(default_factory=dict)
    quarantine_requirements: Optional[str] = None
    vaccination_requirements: List[str] = Field(default_factory=list)
    additional_notes: Optional[str] = None
    policy_url: Optional[str] = Field(None, max_length=2048)

    @field_validator("requirements", "documentation_needed", "vaccination_requirements", mode="before")
    @classmethod
    def clean_lists(cls, v):
        return ensure_array(v)

    @field_validator("fees", "restrictions", mode="before")
    @classmethod
    def clean_dicts(cls, v):
        if v is None:
            return {}
        if isinstance(v, str):
            return {"description": v}
        if not isinstance(v, dict):
            return {}
        return v

    @field_validator("title", "description", "quarantine_requirements", "additional_notes", "policy_url", mode="before")
    @classmethod
    def clean_strings(cls, v):
        return _clean_text(v)
