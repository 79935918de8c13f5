"""
Core utilities and configuration for the pet-travel sync engine.

This package provides foundational components used throughout the engine:

Modules:
    config: Application configuration and environment variable management
    database: Async engine and session factory management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import ChunkFatalError, PersistenceError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Get database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""
