from pydantic import BaseModel, Field

class IngestRequest(BaseModel):
    owner_id: str
    document_id: str | None = None   # generated when the upload handler did not create one
    file_location: str
    file_name: str
    file_type: str | None = None
    file_size: int = 0

class SearchRequest(BaseModel):
    query_vector: list[float]
    owner_id: str
    top_k: int = Field(default=5, ge=1, le=100)
    threshold: float = Field(default=0.35, ge=-1.0, le=1.0)

class SimilarityMatch(BaseModel):
    id: int | str                    # row id (sql) or point id (qdrant)
    document_id: str
    chunk_text: str
    chunk_index: int
    similarity: float

class ContextRequest(BaseModel):
    query: str
    owner_id: str
    top_k: int | None = None
    threshold: float | None = None

class ContextResult(BaseModel):
    context_text: str
    sources_used: list[SimilarityMatch]
    dropped_for_budget: int = 0

class ContextResponse(BaseModel):
    query: str
    context: ContextResult
    messages: list[dict]

class OwnerEmbeddingStats(BaseModel):
    owner_id: str
    embedding_count: int
    document_count: int
    dimensions: int | None = None
    embedding_model: str | None = None
