"""
Chunked, resumable synchronization of external reference data.

Modules:
    signature: Content fingerprints for change detection
    notifications: Pub/sub for progress row changes
    progress_store: Durable per-type progress with optimistic versioning
    chunk_processor: Processing of one bounded slice of work
    continuation: Per-type drivers that run jobs to completion
    orchestrator: Start/resume/status entry point
    scheduler: Periodic recovery of orphaned jobs
    providers: Content providers per sync type
"""
