from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from .demux import summarize_results
from .errors import ConfigurationError, SynthesisError
from .schemas import (
    BatchPreview,
    EvaluationRequest,
    EvaluationResponse,
    PlanRequest,
    PlanResponse,
)
from .service import MultiTestService, multitest_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/multitest", tags=["multitest"])


def get_multitest_service() -> MultiTestService:
    return multitest_service


@router.post("/evaluate", response_model=EvaluationResponse, summary="Run all test cases in batched judge jobs")
async def evaluate(req: EvaluationRequest, service: MultiTestService = Depends(get_multitest_service)):
    try:
        results = await service.evaluate(
            req.source_code,
            [tc.to_test_case() for tc in req.test_cases],
            req.time_limit_seconds,
            language=req.language,
            deadline_seconds=req.deadline_seconds,
        )
    except SynthesisError as exc:
        raise HTTPException(status_code=422, detail=exc.to_detail()) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=exc.to_detail()) from exc
    except Exception as exc:
        logger.exception("multitest evaluation failed")
        raise HTTPException(
            status_code=500,
            detail={"error_code": "E_UNKNOWN", "message": f"Evaluation failed: {exc}"},
        ) from exc
    return EvaluationResponse(results=results, summary=summarize_results(results))


@router.post("/plan", response_model=PlanResponse, summary="Preview how test cases would be batched")
async def plan(req: PlanRequest, service: MultiTestService = Depends(get_multitest_service)):
    try:
        execution_plan = service.plan(
            [tc.to_test_case() for tc in req.test_cases],
            req.time_limit_seconds,
            language=req.language,
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=exc.to_detail()) from exc
    return PlanResponse(
        configuration=execution_plan.configuration,
        batches=[
            BatchPreview(
                batch_id=b.batch_id,
                start_index=b.start_index,
                end_index=b.end_index,
                size=b.size,
                estimated_execution_time=b.estimated_execution_time,
                test_case_ids=[tc.id for tc in b.test_cases],
            )
            for b in execution_plan.batches
        ],
        validation=execution_plan.validation,
        efficiency=execution_plan.efficiency,
        summary=execution_plan.summary,
    )
