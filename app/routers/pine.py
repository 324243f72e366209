"""Pine Script validation and execution endpoints."""

import asyncio
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from app.config import Settings, get_settings
from app.schemas import (
    BarSchema,
    MockBarsResponse,
    PineRunError,
    PineRunRequest,
    PineRunResponse,
    PineValidateRequest,
    PineValidateResponse,
)
from app.services.pine import (
    PineScriptError,
    execute_pine_script,
    generate_mock_ohlc,
    get_last_metrics,
    validate,
)

router = APIRouter()
logger = structlog.get_logger(__name__)

# Upper bound for GET /pine/mock-bars
MAX_MOCK_BARS = 10_000


def _check_script_size(script: str, settings: Settings) -> None:
    if len(script) > settings.pine_max_script_chars:
        raise HTTPException(
            400,
            f"Script too large: {len(script)} characters "
            f"(max {settings.pine_max_script_chars})",
        )


@router.post(
    "/validate",
    response_model=PineValidateResponse,
    responses={
        400: {"description": "Script exceeds pine_max_script_chars"},
    },
)
async def validate_pine_script(
    request: PineValidateRequest,
    settings: Settings = Depends(get_settings),
) -> PineValidateResponse:
    """
    Run the line-scan validator.

    Returns every diagnostic; `valid` is false when any has error severity.
    """
    _check_script_size(request.script, settings)
    result = validate(request.script)
    logger.info(
        "pine_validate",
        errors=result.error_count,
        warnings=result.warning_count,
        version=result.version,
    )
    return PineValidateResponse(
        valid=not result.has_errors,
        version=result.version,
        diagnostics=[d.to_dict() for d in result.diagnostics],
    )


@router.post(
    "/run",
    response_model=PineRunResponse,
    responses={
        400: {"description": "Too many bars or script too large"},
        422: {"description": "Script rejected", "model": PineRunError},
    },
)
async def run_script(
    request: PineRunRequest,
    settings: Settings = Depends(get_settings),
) -> PineRunResponse:
    """
    Execute a script against the supplied bars, or mock bars when none given.

    Rejections (error diagnostics, syntax errors, runtime failures) return
    422 with the formatted message and the blocking diagnostics.
    """
    _check_script_size(request.script, settings)

    if request.bars is not None:
        if len(request.bars) > settings.pine_max_bars:
            raise HTTPException(
                400,
                f"Too many bars: {len(request.bars)} (max {settings.pine_max_bars})",
            )
        bars = [bar.model_dump() for bar in request.bars]
    else:
        count = min(
            request.mock_bar_count or settings.pine_mock_bar_count,
            settings.pine_max_bars,
        )
        bars = generate_mock_ohlc(count, seed=settings.pine_mock_seed)

    # Evaluation is CPU-bound; keep it off the event loop
    loop = asyncio.get_running_loop()
    try:
        result = await loop.run_in_executor(
            None, execute_pine_script, request.script, bars
        )
    except PineScriptError as e:
        logger.info(
            "pine_run_rejected",
            code=e.code,
            diagnostics=len(e.diagnostics),
        )
        raise HTTPException(
            status_code=422,
            detail=PineRunError(
                message=e.message,
                code=e.code,
                diagnostics=[d.to_dict() for d in e.diagnostics],
            ).model_dump(),
        )

    return PineRunResponse(**result.to_dict())


@router.get("/mock-bars", response_model=MockBarsResponse)
async def mock_bars(
    count: int = Query(200, ge=1, le=MAX_MOCK_BARS, description="Number of bars"),
    seed: Optional[int] = Query(None, description="Generator seed"),
    settings: Settings = Depends(get_settings),
) -> MockBarsResponse:
    """Deterministic mock OHLCV bars (same count and seed, same bars)."""
    effective_seed = settings.pine_mock_seed if seed is None else seed
    bars = generate_mock_ohlc(count, seed=effective_seed)
    return MockBarsResponse(
        count=len(bars),
        seed=effective_seed,
        bars=[BarSchema(**bar.to_dict()) for bar in bars],
    )


@router.get("/metrics")
async def last_metrics() -> Optional[dict]:
    """Metrics of the most recent successful run, or null."""
    metrics = get_last_metrics()
    return metrics.to_dict() if metrics is not None else None
