import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from ragcore.core.embed.embedder import Embedder
from ragcore.core.errors import DimensionMismatchError
from ragcore.core.generate.prompt_builder import PromptBuilder
from ragcore.core.retrieve.context_builder import ContextBuilder
from ragcore.models.query import ContextRequest, ContextResponse, SearchRequest, SimilarityMatch
from ragcore.storage.base import VectorStore

router = APIRouter()
logger = logging.getLogger(__name__)


def get_vector_store(request: Request) -> VectorStore:
    return request.app.state.vector_store

def get_embedder(request: Request) -> Embedder:
    return request.app.state.embedder

def get_context_builder(request: Request) -> ContextBuilder:
    return request.app.state.context_builder


@router.post("/search", response_model=List[SimilarityMatch], summary="Similarity search over an owner's chunks")
def search(
    request_data: SearchRequest,
    vector_store: VectorStore = Depends(get_vector_store),
    embedder: Embedder = Depends(get_embedder)
):
    """
    1. Rejects query vectors whose dimensionality does not match the embedding model.
    2. Returns at most top_k chunks with similarity >= threshold, best first.
    """
    try:
        if len(request_data.query_vector) != embedder.dimensions:
            raise DimensionMismatchError(
                expected=embedder.dimensions,
                actual=len(request_data.query_vector),
                owner_id=request_data.owner_id
            )
        return vector_store.search(
            request_data.query_vector,
            request_data.owner_id,
            request_data.top_k,
            request_data.threshold
        )
    except DimensionMismatchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Similarity search failed.")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/context", response_model=ContextResponse, summary="Assemble retrieval context and prompt messages for a question")
def build_context(
    request_data: ContextRequest,
    context_builder: ContextBuilder = Depends(get_context_builder)
):
    try:
        logger.info(f"Building context for owner {request_data.owner_id}: '{request_data.query}'")
        context = context_builder.build(
            request_data.query,
            request_data.owner_id,
            top_k=request_data.top_k,
            threshold=request_data.threshold
        )
    except DimensionMismatchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Context assembly failed.")
        raise HTTPException(status_code=500, detail=str(e))

    return ContextResponse(
        query=request_data.query,
        context=context,
        messages=PromptBuilder.build_messages(request_data.query, context.context_text)
    )
