from pydantic import BaseModel

class ExtractedText(BaseModel):
    text: str
    file_format: str                 # "pdf" | "docx" | "text" | "csv"
    page_count: int | None = None    # PDF only
    word_count: int
    char_count: int

class TextChunk(BaseModel):
    text: str                        # trimmed slice of the normalised text
    index: int                       # zero-based, strictly increasing per document
    start_char: int                  # offsets into the normalised text, [start, end)
    end_char: int

class ChunkResult(BaseModel):
    chunks: list[TextChunk]
    normalised_length: int
    truncated: bool = False          # max chunk ceiling was hit

class ChunkStats(BaseModel):
    count: int
    avg_size: int
    min_size: int
    max_size: int
    total_chars: int

class CompressedVector(BaseModel):
    values: list[float] | list[int]
    method: str                      # "none" | "int8" | "int16"
    min: float
    max: float
    dimensions: int
    compression_ratio: float

class StorageSavings(BaseModel):
    original_bytes: int
    compressed_bytes: int
    saved_bytes: int
    savings_percentage: float
