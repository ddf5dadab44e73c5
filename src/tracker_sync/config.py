"""Configuration loaded from environment / ``.env`` and split into per-component structs.

:class:`Settings` is built exactly once by an entry point (the KFP component
or ``python -m tracker_sync``) and validated at construction.  Components
never read the environment themselves; they receive the frozen sub-configs
produced by :meth:`Settings.fetch_config` and friends.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings

DEFAULT_FIELDS = [
    "summary",
    "description",
    "status",
    "priority",
    "assignee",
    "reporter",
    "created",
    "updated",
    "labels",
    "issuetype",
    "project",
    "comment",
]


class FetchConfig(BaseModel):
    """Connection and pacing parameters for the paginated fetcher."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    user_email: str
    api_token: SecretStr
    project_key: str
    search_path: str = "/search"
    record_path: str = "/record"
    fields: tuple[str, ...] = tuple(DEFAULT_FIELDS)
    page_size: int = Field(default=100, ge=1, le=1000)
    max_records: int = Field(default=0, ge=0)
    request_interval_seconds: float = Field(default=0.2, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    rate_limit_max_retries: int = Field(default=5, ge=0)
    transient_max_retries: int = Field(default=3, ge=0)
    backoff_cap_seconds: float = Field(default=30.0, gt=0)
    max_retry_after_seconds: float = Field(default=120.0, gt=0)

    @property
    def query(self) -> str:
        return f'project = "{self.project_key}" ORDER BY updated DESC'


class NormalizerConfig(BaseModel):
    """Parameters for turning raw records into canonical documents."""

    model_config = ConfigDict(frozen=True)

    base_url: str = ""
    comment_truncation_threshold: int = Field(default=20, ge=1)
    custom_field_names: dict[str, str] = Field(default_factory=dict)


class ChunkingConfig(BaseModel):
    """Parameters for :class:`~tracker_sync.ingestion.chunker.SemanticChunker`."""

    model_config = ConfigDict(frozen=True)

    max_size: int = Field(default=1800, ge=1)
    overlap: int = Field(default=200, ge=0)
    respect_boundaries: bool = True
    boundary_window: int = Field(default=50, ge=0)
    max_chunks: int = Field(default=1000, ge=1)


class EmbeddingConfig(BaseModel):
    """Parameters for the batched embedding pipeline."""

    model_config = ConfigDict(frozen=True)

    model_name: str = "sentence-transformers/paraphrase-multilingual-mpnet-base-v2"
    dimension: int = Field(default=768, ge=1)
    batch_size: int = Field(default=50, ge=1)
    concurrency: int = Field(default=10, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    initial_delay_seconds: float = Field(default=1.0, ge=0)
    batch_pause_seconds: float = Field(default=0.1, ge=0)
    progress_interval: float = Field(default=0.05, gt=0, le=1)


class UpsertConfig(BaseModel):
    """Write-size bounds for the vector-store upsert engine."""

    model_config = ConfigDict(frozen=True)

    upsert_batch_size: int = Field(default=25, ge=1)
    rebuild_batch_size: int = Field(default=500, ge=1)


class SyncConfig(BaseModel):
    """Orchestrator-level parameters."""

    model_config = ConfigDict(frozen=True)

    project_key: str = ""
    page_size: int = Field(default=100, ge=1)
    max_records: int = Field(default=0, ge=0)
    timestamp_tolerance_seconds: float = Field(default=1.0, ge=0)
    persist_batch_size: int = Field(default=50, ge=1)
    enrichment_concurrency: int = Field(default=5, ge=1)


class Settings(BaseSettings):
    """Process-wide settings, populated from env vars or ``.env`` file."""

    # Source API
    tracker_base_url: str = Field(description="Base URL of the issue-tracker API")
    tracker_user_email: str = Field(description="Account used for Basic auth")
    tracker_api_token: SecretStr = Field(description="API token used for Basic auth")
    tracker_project_key: str = Field(description="Only records of this project are synced")
    tracker_search_path: str = "/search"
    tracker_record_path: str = "/record"
    tracker_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_FIELDS))
    custom_field_names: dict[str, str] = Field(
        default_factory=dict,
        description="Source field id → readable name, e.g. {'customfield_10291': 'impact_domain'}",
    )

    # Fetch
    page_size: int = Field(default=100, ge=1, le=1000)
    max_records: int = Field(default=0, ge=0, description="0 means unlimited")
    request_interval_seconds: float = Field(default=0.2, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    rate_limit_max_retries: int = Field(default=5, ge=0)
    transient_max_retries: int = Field(default=3, ge=0)
    backoff_cap_seconds: float = Field(default=30.0, gt=0)
    max_retry_after_seconds: float = Field(default=120.0, gt=0)
    enrichment_concurrency: int = Field(default=5, ge=1)

    # Normalizing
    comment_truncation_threshold: int = Field(default=20, ge=1)

    # Chunking
    chunk_size: int = Field(default=1800, ge=1)
    chunk_overlap: int = Field(default=200, ge=0)
    respect_sentence_boundaries: bool = True
    boundary_window: int = Field(default=50, ge=0)
    max_chunks_per_document: int = Field(default=1000, ge=1)

    # Diffing
    timestamp_tolerance_seconds: float = Field(default=1.0, ge=0)

    # Embedding
    embedding_model: str = "sentence-transformers/paraphrase-multilingual-mpnet-base-v2"
    embedding_dim: int = Field(default=768, ge=1)
    embed_batch_size: int = Field(default=50, ge=1)
    embed_concurrency: int = Field(default=10, ge=1)
    embed_max_attempts: int = Field(default=3, ge=1)
    embed_initial_delay_seconds: float = Field(default=1.0, ge=0)
    embed_batch_pause_seconds: float = Field(default=0.1, ge=0)
    progress_interval: float = Field(default=0.05, gt=0, le=1)

    # Stores
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    vector_collection: str = "tracker_records"
    document_collection: str = "tracker_documents"
    job_collection: str = "tracker_sync_jobs"
    upsert_batch_size: int = Field(default=25, ge=1)
    rebuild_batch_size: int = Field(default=500, ge=1)
    persist_batch_size: int = Field(default=50, ge=1)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @model_validator(mode="after")
    def _check_source(self) -> Settings:
        if not self.tracker_base_url.startswith(("http://", "https://")):
            raise ValueError(f"tracker_base_url must be an http(s) URL, got {self.tracker_base_url!r}")
        if not self.tracker_project_key.strip():
            raise ValueError("tracker_project_key must not be empty")
        return self

    # -- sub-configs ----------------------------------------------------------

    def fetch_config(self) -> FetchConfig:
        return FetchConfig(
            base_url=self.tracker_base_url.rstrip("/"),
            user_email=self.tracker_user_email,
            api_token=self.tracker_api_token,
            project_key=self.tracker_project_key,
            search_path=self.tracker_search_path,
            record_path=self.tracker_record_path,
            fields=tuple(self.tracker_fields) + tuple(self.custom_field_names),
            page_size=self.page_size,
            max_records=self.max_records,
            request_interval_seconds=self.request_interval_seconds,
            request_timeout_seconds=self.request_timeout_seconds,
            rate_limit_max_retries=self.rate_limit_max_retries,
            transient_max_retries=self.transient_max_retries,
            backoff_cap_seconds=self.backoff_cap_seconds,
            max_retry_after_seconds=self.max_retry_after_seconds,
        )

    def normalizer_config(self) -> NormalizerConfig:
        return NormalizerConfig(
            base_url=self.tracker_base_url.rstrip("/"),
            comment_truncation_threshold=self.comment_truncation_threshold,
            custom_field_names=self.custom_field_names,
        )

    def chunking_config(self) -> ChunkingConfig:
        return ChunkingConfig(
            max_size=self.chunk_size,
            overlap=self.chunk_overlap,
            respect_boundaries=self.respect_sentence_boundaries,
            boundary_window=self.boundary_window,
            max_chunks=self.max_chunks_per_document,
        )

    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(
            model_name=self.embedding_model,
            dimension=self.embedding_dim,
            batch_size=self.embed_batch_size,
            concurrency=self.embed_concurrency,
            max_attempts=self.embed_max_attempts,
            initial_delay_seconds=self.embed_initial_delay_seconds,
            batch_pause_seconds=self.embed_batch_pause_seconds,
            progress_interval=self.progress_interval,
        )

    def upsert_config(self) -> UpsertConfig:
        return UpsertConfig(
            upsert_batch_size=self.upsert_batch_size,
            rebuild_batch_size=self.rebuild_batch_size,
        )

    def sync_config(self) -> SyncConfig:
        return SyncConfig(
            project_key=self.tracker_project_key,
            page_size=self.page_size,
            max_records=self.max_records,
            timestamp_tolerance_seconds=self.timestamp_tolerance_seconds,
            persist_batch_size=self.persist_batch_size,
            enrichment_concurrency=self.enrichment_concurrency,
        )
