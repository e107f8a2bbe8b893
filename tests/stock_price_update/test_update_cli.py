import json

import pytest

from src.functions.stock_price_update.core.pipeline import StockPriceUpdatePipeline
from src.functions.stock_price_update.core.row_store import InMemoryRowStore
from src.functions.stock_price_update.scripts import update_prices_cli
from src.shared.batch import BatchStatus, InMemoryStateStore

PRICES = {"1301": 3850.0, "7203": 2875.5}


@pytest.fixture
def wired(monkeypatch, fast_config, fake_fetcher_cls):
    created = {}

    def fake_create_pipeline(*, state_file=None, dry_run=False, codes=None, config=None):
        created["kwargs"] = {"state_file": state_file, "dry_run": dry_run, "codes": codes}
        pipeline = StockPriceUpdatePipeline(
            InMemoryRowStore(PRICES),
            fake_fetcher_cls({"1301": 3850.0}),
            InMemoryStateStore(),
            config=fast_config,
            dry_run=dry_run,
            sleep=lambda seconds: None,
            use_watchdog=False,
        )
        created["pipeline"] = pipeline
        return pipeline

    monkeypatch.setattr(update_prices_cli, "create_pipeline", fake_create_pipeline)
    return created


@pytest.mark.parametrize(
    "status, expected",
    [
        (BatchStatus.COMPLETED, 0),
        (BatchStatus.SAFE_TIMEOUT, 2),
        (BatchStatus.TIMEOUT, 2),
        (BatchStatus.CANCELLED, 2),
        (BatchStatus.ERROR, 1),
    ],
)
def test_exit_code_for(status, expected):
    assert update_prices_cli.exit_code_for(status) == expected


def test_run_prints_json_and_writes_failures(wired, tmp_path, capsys):
    failures_file = tmp_path / "failures.json"

    code = update_prices_cli.main(
        ["run", "--dry-run", "--output-format", "json", "--failures-file", str(failures_file)]
    )

    assert code == 0
    assert wired["kwargs"]["dry_run"] is True
    output = json.loads(capsys.readouterr().out)
    assert output["status"] == "completed"
    assert (output["success_count"], output["error_count"]) == (1, 1)
    assert json.loads(failures_file.read_text())[0]["item"] == "7203"
    assert not failures_file.with_suffix(".tmp").exists()


def test_status_action(wired, capsys):
    code = update_prices_cli.main(["status"])

    assert code == 0
    status = json.loads(capsys.readouterr().out)
    assert status["process_id"] == "batch_stock_price_update_fixed"
    assert status["checkpoint"] is None


def test_resume_without_checkpoint_fails(wired):
    assert update_prices_cli.main(["resume"]) == 1


@pytest.mark.parametrize(
    "name, value",
    [("BATCH_SIZE", "0"), ("BATCH_SOFT_TIME_LIMIT", "off")],
)
def test_configuration_error_exits_with_error(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    assert update_prices_cli.main(["run"]) == 1


def test_resume_one_off_process_id_needs_codes(wired):
    assert update_prices_cli.main(["resume", "--process-id", "mine"]) == 1
