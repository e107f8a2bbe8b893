"""Stock price update service handler."""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from src.shared.batch import BatchStatus, CheckpointNotFoundError
from src.shared.utils.config_validator import ConfigurationError
from src.shared.utils.env import load_env
from src.shared.utils.logging import setup_logging
from src.functions.stock_price_update.core.contracts import UpdateRequest
from src.functions.stock_price_update.core.factory import create_pipeline
from src.functions.stock_price_update.core.pipeline import StockPriceUpdatePipeline

load_env()
setup_logging(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

PipelineFactory = Callable[[UpdateRequest], StockPriceUpdatePipeline]


def _default_factory(request: UpdateRequest) -> StockPriceUpdatePipeline:
    return create_pipeline(codes=request.codes)


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "request"
        parts.append(f"{location}: {error.get('msg')}")
    return "Invalid request: " + "; ".join(parts)


def handle_request(
    request: Dict[str, Any],
    pipeline_factory: Optional[PipelineFactory] = None,
) -> Dict[str, Any]:
    """Run, resume, cancel, inspect or clear the stock price update."""

    try:
        update_request = UpdateRequest.model_validate(request or {})
    except ValidationError as exc:
        return {"status": "error", "message": _format_validation_error(exc)}

    factory = pipeline_factory or _default_factory
    try:
        pipeline = factory(update_request)
    except (ConfigurationError, ValueError) as exc:
        logger.error("Failed to set up stock price update: %s", exc)
        return {"status": "error", "message": str(exc)}

    action = update_request.action
    process_id = update_request.process_id

    if action == "cancel":
        pipeline.cancel()
        return {"status": "success", "message": "Cancellation requested"}

    if action == "status":
        return {"status": "success", **pipeline.status(process_id)}

    if action == "clear":
        pipeline.clear(process_id)
        return {"status": "success", "message": "Saved progress cleared"}

    try:
        if action == "resume":
            result = pipeline.resume(
                update_request.codes,
                process_id=process_id,
                overrides=update_request.batch_overrides(),
            )
        else:
            result = pipeline.run(
                update_request.codes,
                process_id=process_id,
                restart=update_request.restart,
                overrides=update_request.batch_overrides(),
            )
    except CheckpointNotFoundError as exc:
        return {"status": "error", "message": str(exc)}
    except (ConfigurationError, ValueError) as exc:
        return {"status": "error", "message": str(exc)}
    except Exception as exc:  # noqa: BLE001 - expose engine failures to caller
        logger.exception("Stock price update failed")
        return {"status": "error", "message": f"Update failed: {exc}"}

    logger.info(
        "STOCK_PRICE_UPDATE_%s: %d/%d processed, %d errors",
        result.status.value.upper(),
        result.processed_count,
        result.total_items,
        result.error_count,
        extra={"batch_result": result.to_dict()},
    )

    response = {
        "status": "success" if result.status is not BatchStatus.ERROR else "error",
        "batch_status": result.status.value,
        "resumable": result.is_resumable,
        "result": result.to_dict(),
    }
    if result.error:
        response["message"] = result.error
    return response
