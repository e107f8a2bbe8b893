import pytest

from src.functions.stock_price_update.core.pipeline import StockPriceUpdatePipeline
from src.functions.stock_price_update.core.row_store import InMemoryRowStore
from src.functions.stock_price_update.functions.main import handle_request
from src.shared.batch import InMemoryStateStore, ProcessState

PRICES = {"7203": 2875.5, "9984": 8123.0}


@pytest.fixture
def pipeline(fast_config, fake_fetcher_cls):
    return StockPriceUpdatePipeline(
        InMemoryRowStore(PRICES),
        fake_fetcher_cls(PRICES),
        InMemoryStateStore(),
        config=fast_config,
        sleep=lambda seconds: None,
        use_watchdog=False,
    )


def _factory(pipeline, seen=None):
    def factory(request):
        if seen is not None:
            seen.append(request)
        return pipeline

    return factory


def test_run_returns_batch_result(pipeline):
    seen = []

    response = handle_request({"codes": [" 7203 ", "7203", "9984"]}, _factory(pipeline, seen))

    assert seen[0].codes == ["7203", "9984"]
    assert response["status"] == "success"
    assert response["batch_status"] == "completed"
    assert response["resumable"] is False
    assert response["result"]["success_count"] == 2
    assert "message" not in response


def test_defaults_to_full_holdings_run(pipeline):
    response = handle_request({}, _factory(pipeline))

    assert response["result"]["process_id"] == "batch_stock_price_update_fixed"
    assert response["result"]["total_items"] == 2


@pytest.mark.parametrize(
    "payload, location",
    [
        ({"action": "explode"}, "action"),
        ({"batch_size": 0}, "batch_size"),
        ({"soft_time_limit": -5}, "soft_time_limit"),
    ],
)
def test_invalid_requests_are_rejected(pipeline, payload, location):
    response = handle_request(payload, _factory(pipeline))

    assert response["status"] == "error"
    assert response["message"].startswith("Invalid request")
    assert location in response["message"]


def test_cancel_then_status(pipeline):
    cancelled = handle_request({"action": "cancel"}, _factory(pipeline))
    status = handle_request({"action": "status"}, _factory(pipeline))

    assert cancelled == {"status": "success", "message": "Cancellation requested"}
    assert status["status"] == "success"
    assert status["cancel_requested"] is True
    assert status["checkpoint"] is None


def test_clear_action(pipeline):
    pipeline.cancel()

    response = handle_request({"action": "clear"}, _factory(pipeline))

    assert response["status"] == "success"
    assert pipeline.cancellation.is_requested() is False


def test_resume_without_saved_progress_is_an_error(pipeline):
    response = handle_request({"action": "resume"}, _factory(pipeline))

    assert response["status"] == "error"
    assert "No saved progress" in response["message"]


def test_factory_errors_are_reported():
    def broken_factory(request):
        raise ValueError("SUPABASE_URL environment variable is required")

    response = handle_request({"action": "status"}, broken_factory)

    assert response == {"status": "error", "message": "SUPABASE_URL environment variable is required"}


def test_engine_errors_are_reported(pipeline):
    def explode(*args, **kwargs):
        raise RuntimeError("state store offline")

    pipeline.run = explode

    response = handle_request({"action": "run"}, _factory(pipeline))

    assert response == {"status": "error", "message": "Update failed: state store offline"}


def test_resume_passes_codes_through(pipeline):
    pipeline.checkpoints.save(
        ProcessState(process_id="mine", last_processed_index=0, processed_count=1, success_count=1)
    )

    response = handle_request(
        {"action": "resume", "process_id": "mine", "codes": ["9984", "7203"]},
        _factory(pipeline),
    )

    assert response["status"] == "success"
    assert response["result"]["total_items"] == 2
    assert response["result"]["processed_this_run"] == 1
    assert pipeline.fetcher.fetched == ["7203"]


def test_resume_one_off_process_id_without_codes_is_an_error(pipeline):
    response = handle_request({"action": "resume", "process_id": "mine"}, _factory(pipeline))

    assert response["status"] == "error"
    assert "pass the same codes" in response["message"]
