from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel
import yaml
import os

class ChunkingConfig(BaseModel):
    chunk_size: int = 1000
    chunk_overlap: int = 200
    min_chunk_size: int = 100
    max_chunks: int = 1000
    boundary_window: float = 0.2     # tail fraction of the window searched for a break point

class EmbeddingConfig(BaseModel):
    provider: str = "ollama"         # "ollama" | "sentence-transformers"
    model_name: str = "nomic-embed-text"
    base_url: str = "http://localhost:11434"
    vector_dim: int = 768
    timeout_seconds: float = 30.0
    request_delay_seconds: float = 0.1
    batch_size: int = 10
    normalise: bool = False

class CompressionConfig(BaseModel):
    method: str = "none"             # "none" | "int8" | "int16"

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///./data/ragcore.db"
    echo_sql: bool = False

class VectorStoreConfig(BaseModel):
    backend: str = "sql"             # "sql" | "qdrant"

class QdrantConfig(BaseModel):
    mode: str = "local"
    local_path: str = "./data/qdrant_store"
    cloud_url: str = ""
    collection_name: str = "rag_chunks"
    hnsw_m: int = 16
    hnsw_ef_construct: int = 100
    hnsw_ef: int = 64

class RetrievalConfig(BaseModel):
    top_k: int = 5
    similarity_threshold: float = 0.35
    max_context_chars: int = 8000
    query_cache_size: int = 500
    query_cache_ttl_seconds: float = 3600.0

class JobsConfig(BaseModel):
    max_attempts: int = 3
    stale_after_seconds: float = 120.0
    max_job_seconds: float = 300.0
    poll_interval_seconds: float = 5.0
    recovery_interval_seconds: float = 60.0
    retry_delay_seconds: float = 0.0
    drain_batch_size: int = 10
    max_consecutive_errors: int = 5
    error_backoff_seconds: float = 60.0
    worker_count: int = 1
    completed_retention_days: int = 7

class StorageConfig(BaseModel):
    uploads_path: str = "./data/uploads"
    download_timeout_seconds: float = 60.0

class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

class AppSettings(BaseSettings):
    chunking: ChunkingConfig = ChunkingConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    compression: CompressionConfig = CompressionConfig()
    database: DatabaseConfig = DatabaseConfig()
    vector_store: VectorStoreConfig = VectorStoreConfig()
    qdrant: QdrantConfig = QdrantConfig()
    retrieval: RetrievalConfig = RetrievalConfig()
    jobs: JobsConfig = JobsConfig()
    storage: StorageConfig = StorageConfig()
    logging: LoggingConfig = LoggingConfig()
    worker_secret: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

def load_settings(config_path: str = "ragcore/config/config.yaml") -> AppSettings:
    """Loads settings from config.yaml and applies env overrides."""

    paths_to_try = [
        os.getenv("RAGCORE_CONFIG", ""),
        config_path,
        "config.yaml",
        "config/config.yaml",
        os.path.join(os.path.dirname(__file__), "config.yaml")
    ]

    yaml_data = {}
    for path in paths_to_try:
        if path and os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
            break

    # Manually map yaml sections to our sub-models
    app_settings = AppSettings(
        chunking=ChunkingConfig(**yaml_data.get("chunking", {})),
        embedding=EmbeddingConfig(**yaml_data.get("embedding", {})),
        compression=CompressionConfig(**yaml_data.get("compression", {})),
        database=DatabaseConfig(**yaml_data.get("database", {})),
        vector_store=VectorStoreConfig(**yaml_data.get("vector_store", {})),
        qdrant=QdrantConfig(**yaml_data.get("qdrant", {})),
        retrieval=RetrievalConfig(**yaml_data.get("retrieval", {})),
        jobs=JobsConfig(**yaml_data.get("jobs", {})),
        storage=StorageConfig(**yaml_data.get("storage", {})),
        logging=LoggingConfig(**yaml_data.get("logging", {}))
    )

    # Deployment-specific endpoints are usually injected through the environment
    if os.getenv("DATABASE_URL"):
        app_settings.database.url = os.environ["DATABASE_URL"]
    if os.getenv("OLLAMA_URL"):
        app_settings.embedding.base_url = os.environ["OLLAMA_URL"]
    return app_settings

# Global settings instance
settings = load_settings()
