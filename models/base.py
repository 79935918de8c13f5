from sqlalchemy import JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite for local runs and tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class SyncType(str, enum.Enum):
    """Categories of external reference data kept in sync"""
    AIRLINES = "airlines"
    AIRPORTS = "airports"
    PET_POLICIES = "petPolicies"
    ROUTES = "routes"
    COUNTRY_POLICIES = "countryPolicies"


class SyncMode(str, enum.Enum):
    """How a sync treats records that already exist"""
    CLEAR = "clear"    # rewrite every record unconditionally
    UPDATE = "update"  # skip records whose content signature is unchanged


class CountryPolicyType(str, enum.Enum):
    """Country policy variants"""
    PET_ARRIVAL = "pet_arrival"
    PET_TRANSIT = "pet_transit"
