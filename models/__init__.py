"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class and shared enums (SyncType, SyncMode, CountryPolicyType)
    sync_progress: Resumable progress of one sync job per sync type
    reference_data: Airlines, airports, routes and countries
    policies: Airline pet policies and country import policies

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and plain JSON elsewhere.

Usage:
    from models import SyncProgress, PetPolicy
    from models.base import SyncType, SyncMode

Relationships:
    - Airline → PetPolicy (one-to-one via pet_policies.airline_id)
    - Country → CountryPolicy (one-to-many by policy type)
"""

from models.base import Base, SyncType, SyncMode, CountryPolicyType
from models.sync_progress import SyncProgress
from models.reference_data import Airline, Airport, Route, Country
from models.policies import PetPolicy, CountryPolicy

__all__ = [
    "Base",
    "SyncType",
    "SyncMode",
    "CountryPolicyType",
    "SyncProgress",
    "Airline",
    "Airport",
    "Route",
    "Country",
    "PetPolicy",
    "CountryPolicy",
]
