"""
Pydantic schemas for data validation and serialization.

Schemas:
    sync: Sync progress snapshots, chunk outcomes and start requests
    normalized: Proposed content records produced by providers
    api: API endpoint request/response schemas

Features:
    - Automatic data validation
    - Type coercion of inconsistent provider output (lists, dicts, strings)
    - JSON serialization for change notifications and the HTTP API

Usage:
    from schemas.sync import SyncProgressRead, ChunkResult
    from schemas.normalized import PetPolicyCreate

Example:
    policy = PetPolicyCreate(
        airline_id="5f0c7b1e-...",
        pet_types_allowed="dogs",
        policy_url=" https://example.com/pets "
    )
    assert policy.pet_types_allowed == ["dogs"]
    assert policy.policy_url == "https://example.com/pets"
"""
