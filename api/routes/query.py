"""
Query Routes
============

Main API endpoint for answering sales questions.
"""

import time

from fastapi import APIRouter, Depends, Request

from api.schemas import ErrorResponse, QueryRequest, QueryResponse
from observability.metrics import track_query_metrics
from trusted_sql.models import Question
from trusted_sql.pipeline import QueryPipeline

router = APIRouter(prefix="/api/v1", tags=["Query"])


def get_pipeline(request: Request) -> QueryPipeline:
    """Dependency to get the configured pipeline from app state."""
    return request.app.state.pipeline


@router.post(
    "/query",
    response_model=QueryResponse,
    responses={
        422: {"description": "Invalid request"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
    summary="Answer a sales question",
    description=(
        "Routes the question to trusted aggregation, a single generated query, "
        "or consensus voting, and returns a validated answer with confidence"
    ),
)
async def process_query(
    body: QueryRequest,
    request: Request,
    pipeline: QueryPipeline = Depends(get_pipeline),
) -> QueryResponse:
    """
    Answer a natural language question for one tenant.

    Candidate failures never surface as errors: they lower the confidence
    score and are described in the metadata.

    Args:
        body: Question, tenant and user
        request: Incoming request (for the request ID)
        pipeline: Injected QueryPipeline instance

    Returns:
        QueryResponse with answer text, confidence and metadata
    """
    start_time = time.perf_counter()

    answer = await pipeline.process_query(
        Question(text=body.question, tenant_id=body.tenant_id, user_id=body.user_id)
    )
    track_query_metrics(answer)

    return QueryResponse(
        text=answer.text,
        confidence_score=answer.confidence_score,
        query_result=answer.query_result,
        sql_query=answer.sql_query,
        metadata=answer.metadata.to_dict(),
        suggestions=answer.suggestions,
        request_id=request.state.request_id,
        processing_time_ms=(time.perf_counter() - start_time) * 1000,
    )
