from unittest.mock import patch

import pytest

import main
from fakes import FakeRouter, build_queue_service


@pytest.mark.asyncio
async def test_run_research_prints_progress_and_report(capsys):
    with patch.object(main, "build_queue", return_value=build_queue_service(max_concurrency=1)):
        exit_code = await main.run_research("Explain quantum computing")

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "queued" in out
    assert "decomposition: 100%" in out
    assert "Research Complete!" in out
    assert "# Report" in out


@pytest.mark.asyncio
async def test_run_research_reports_failure(capsys):
    service = build_queue_service(FakeRouter(), max_concurrency=1)
    with patch.object(main, "build_queue", return_value=service), patch.object(
        service.retrieval, "execute", side_effect=RuntimeError("index exploded")
    ):
        exit_code = await main.run_research("Explain quantum computing")

    assert exit_code == 1
    assert "[!] Error: index exploded" in capsys.readouterr().out
