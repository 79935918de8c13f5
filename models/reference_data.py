from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, Index
from datetime import datetime
import uuid
from models.base import Base


class Airline(Base):
    """
    Airlines known to the search product.

    Source: Cirium FlightStats airlines feed, keyed by IATA code.
    last_policy_update tracks when the pet policy was last analyzed and
    drives the targeted ("smart") pet policy update.
    """
    __tablename__ = "airlines"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    iata_code = Column(String(3), nullable=False, unique=True, index=True)
    icao_code = Column(String(4), nullable=True)
    name = Column(String(255), nullable=False)
    country = Column(String(100), nullable=True)
    website = Column(String(2048), nullable=True)
    active = Column(Boolean, nullable=False, default=True, index=True)
    last_policy_update = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Airport(Base):
    """Airports from the Cirium FlightStats active airports feed"""
    __tablename__ = "airports"

    iata_code = Column(String(3), primary_key=True)
    name = Column(String(255), nullable=False)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True, index=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    timezone = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Route(Base):
    """Airline routes imported from an OpenFlights-format routes file"""
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    airline_iata = Column(String(3), nullable=False)
    source_airport = Column(String(4), nullable=False)
    destination_airport = Column(String(4), nullable=False)
    codeshare = Column(Boolean, nullable=False, default=False)
    stops = Column(Integer, nullable=False, default=0)
    equipment = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_route_airline_pair", "airline_iata", "source_airport", "destination_airport", unique=True),
    )


class Country(Base):
    """Countries whose pet import policies are tracked"""
    __tablename__ = "countries"

    code = Column(String(3), primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
