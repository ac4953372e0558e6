import logging
import re
from typing import List, Optional

from ragcore.config.settings import ChunkingConfig, settings
from ragcore.models.chunk import ChunkResult, ChunkStats, TextChunk

logger = logging.getLogger(__name__)

# ". " / "! " / "? " followed by a capital letter
SENTENCE_BREAK = re.compile(r"[.!?]\s+(?=[A-Z])")


class TextChunker:
    """
    Boundary-aware character chunker.
    - Greedy windows of chunk_size characters with chunk_overlap carried over.
    - Window ends are pulled back to the best break point found in the tail of
      the window: sentence > paragraph > word > hard cut.
    - Every iteration advances `start`, so chunking always terminates, and the
      same input always yields the same boundaries.
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or settings.chunking
        if self.config.chunk_overlap >= self.config.chunk_size:
            raise ValueError(
                f"Overlap ({self.config.chunk_overlap}) must be less than "
                f"chunk size ({self.config.chunk_size})"
            )
        if not 0 < self.config.min_chunk_size <= self.config.chunk_size:
            raise ValueError(f"min_chunk_size must be in (0, {self.config.chunk_size}]")

    @staticmethod
    def normalise_text(text: str) -> str:
        """Unifies line endings and collapses runs of blank lines. Offsets refer to this text."""
        cleaned = text.replace("\r\n", "\n").replace("\r", "\n")
        cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
        return cleaned.strip()

    def chunk(self, text: str) -> ChunkResult:
        cfg = self.config
        cleaned = self.normalise_text(text)
        n = len(cleaned)
        logger.info(f"Chunking {n} characters (size={cfg.chunk_size}, overlap={cfg.chunk_overlap})")

        chunks: List[TextChunk] = []
        truncated = False
        start = 0

        while start < n:
            end = min(start + cfg.chunk_size, n)
            if end < n:
                end = self._find_break(cleaned, start, end)

            piece = cleaned[start:end].strip()
            if len(piece) >= cfg.min_chunk_size:
                chunks.append(TextChunk(text=piece, index=len(chunks), start_char=start, end_char=end))

            if end >= n:
                break

            if len(chunks) >= cfg.max_chunks:
                truncated = True
                logger.warning(f"Maximum chunk limit reached ({cfg.max_chunks}); remaining text is not chunked")
                break

            next_start = end - cfg.chunk_overlap
            # Break point landed too early to move past the overlap: force progress
            start = next_start if next_start > start else start + cfg.min_chunk_size

        if chunks:
            stats = self.get_chunk_stats(chunks)
            logger.info(f"Chunking complete: {stats.count} chunks, avg size {stats.avg_size}")
        else:
            logger.info("No chunks produced (input empty or below minimum chunk size)")

        return ChunkResult(chunks=chunks, normalised_length=n, truncated=truncated)

    def _find_break(self, text: str, start: int, end: int) -> int:
        """
        Returns the position in (start, end] where the chunk should stop.
        Only the tail of the window is searched, and never before start + min_chunk_size.
        """
        cfg = self.config
        window = int(cfg.chunk_size * cfg.boundary_window)
        search_start = max(start + cfg.min_chunk_size, end - window)
        if search_start >= end:
            return end

        # Lookahead may need the character just past the window
        sentence_ends = [
            m.end() for m in SENTENCE_BREAK.finditer(text, search_start, min(len(text), end + 1))
            if m.end() <= end
        ]
        if sentence_ends:
            return sentence_ends[-1]

        para = text.rfind("\n\n", search_start, end)
        if para != -1:
            return para + 2

        word = max(text.rfind(" ", search_start, end), text.rfind("\n", search_start, end))
        if word != -1:
            return word + 1

        return end

    @staticmethod
    def get_chunk_stats(chunks: List[TextChunk]) -> ChunkStats:
        if not chunks:
            return ChunkStats(count=0, avg_size=0, min_size=0, max_size=0, total_chars=0)
        sizes = [len(c.text) for c in chunks]
        return ChunkStats(
            count=len(sizes),
            avg_size=round(sum(sizes) / len(sizes)),
            min_size=min(sizes),
            max_size=max(sizes),
            total_chars=sum(sizes)
        )
