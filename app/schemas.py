from pydantic import BaseModel, Field


class CacheKeyStats(BaseModel):
    """Single cached payload"""
    format: str = Field(..., description="Output format ('xml' or 'gz')")
    ttl_seconds: int = Field(..., description="Staleness window the entry was built for")
    age_seconds: float = Field(..., description="Seconds since the entry was created")
    size_bytes: int = Field(..., description="Payload size")


class CacheStats(BaseModel):
    """Feed cache statistics"""
    entries: int
    max_entries: int
    hits: int
    misses: int
    keys: list[CacheKeyStats] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = "ok"
    sources_configured: int
    scheduler_running: bool
    next_cache_purge: str | None = None
    cache: CacheStats


class SourceStatus(BaseModel):
    """Outcome of one source in the last pipeline run"""
    source_index: int
    sanitized_url: str
    status: str
    compressed: bool = False
    bytes_received: int = 0
    started_at: str
    completed_at: str
    duration_seconds: float
    error: str | None = None


class PipelineStatus(BaseModel):
    """Summary of the most recent merge pipeline run"""
    status: str = Field(..., description="'running', 'success' or 'failed'")
    format: str
    ttl_seconds: int
    started_at: str
    completed_at: str | None = None
    sources_processed: int = 0
    sources_succeeded: int = 0
    sources_failed: int = 0
    channels: int = 0
    programmes: int = 0
    payload_bytes: int = 0
    error: str | None = None
    source_details: list[SourceStatus] = Field(default_factory=list)


class StatusResponse(BaseModel):
    """Status endpoint response"""
    last_run: PipelineStatus | None = None
