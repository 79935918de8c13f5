from sqlalchemy import Column, Integer, String, Enum, DateTime, Text, ForeignKey, Index
from datetime import datetime
from models.base import Base, JSONType, CountryPolicyType


class PetPolicy(Base):
    """
    Airline pet travel policy, one row per airline.

    Structured fields are extracted from the airline's official policy page
    by the policy analyzer. The semantically relevant subset of these fields
    feeds the content signature used to skip unchanged policies.
    """
    __tablename__ = "pet_policies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    airline_id = Column(String(36), ForeignKey("airlines.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    pet_types_allowed = Column(JSONType, nullable=True)
    size_restrictions = Column(JSONType, nullable=True)
    carrier_requirements = Column(Text, nullable=True)
    carrier_requirements_cabin = Column(Text, nullable=True)
    carrier_requirements_cargo = Column(Text, nullable=True)
    documentation_needed = Column(JSONType, nullable=True)
    fees = Column(JSONType, nullable=True)
    temperature_restrictions = Column(Text, nullable=True)
    breed_restrictions = Column(JSONType, nullable=True)
    policy_url = Column(String(2048), nullable=True)

    # Provenance
    sources = Column(JSONType, nullable=True)
    raw_api_response = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class CountryPolicy(Base):
    """Country pet import (arrival) and transit policy"""
    __tablename__ = "country_policies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    country_code = Column(String(3), nullable=False, index=True)
    policy_type = Column(Enum(CountryPolicyType, values_callable=lambda e: [m.value for m in e]), nullable=False)

    title = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    requirements = Column(JSONType, nullable=True)
    documentation_needed = Column(JSONType, nullable=True)
    fees = Column(JSONType, nullable=True)
    restrictions = Column(JSONType, nullable=True)
    quarantine_requirements = Column(Text, nullable=True)
    vaccination_requirements = Column(JSONType, nullable=True)
    additional_notes = Column(Text, nullable=True)
    policy_url = Column(String(2048), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_country_policy_type", "country_code", "policy_type", unique=True),
    )
