# SPDX-License-Identifier: MIT
"""Tests for the command line entry point."""

import pytest
from click.testing import CliRunner

from dedup_worker import main
from dedup_worker.deduplication.analyzer import AnalysisResult
from dedup_worker.deduplication.similarity import SimilarityEvaluator


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def event_file(tmp_path, sample_event):
    path = tmp_path / "event.json"
    path.write_text(sample_event.to_json(), encoding="utf-8")
    return path


class TestAnalyzeCommand:
    def test_prints_suspicions(self, mocker, runner, event_file, sample_event, source_record, make_hit, suspect_id):
        suspicion = SimilarityEvaluator(threshold=4.0).evaluate(source_record, make_hit())
        analyzer = mocker.MagicMock()
        analyzer.handle.return_value = AnalysisResult(
            event_id=sample_event.event_id,
            customer_id=source_record.customer_id,
            hits=1,
            suspicions=[suspicion],
        )
        mocker.patch.object(main, "build_analyzer", return_value=analyzer)

        result = runner.invoke(main.cli, ["analyze", str(event_file)])

        assert result.exit_code == 0, result.output
        analyzer.handle.assert_called_once_with(sample_event)
        assert str(suspect_id) in result.output
        assert "5.00" in result.output

    def test_skipped_event(self, mocker, runner, event_file, sample_event):
        analyzer = mocker.MagicMock()
        analyzer.handle.return_value = AnalysisResult(event_id=sample_event.event_id, skipped=True)
        mocker.patch.object(main, "build_analyzer", return_value=analyzer)

        result = runner.invoke(main.cli, ["analyze", str(event_file)])

        assert result.exit_code == 0
        assert "no valid customer id" in result.output

    def test_rejects_malformed_file(self, runner, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        result = runner.invoke(main.cli, ["analyze", str(path)])

        assert result.exit_code == 2


class TestPublishCommand:
    def test_sends_to_inbound_queue(self, mocker, runner, event_file, sample_event):
        send = mocker.patch.object(main.DuplicateEventPublisher, "send")

        result = runner.invoke(main.cli, ["publish", str(event_file)])

        assert result.exit_code == 0, result.output
        send.assert_called_once_with(sample_event, queue="EventosCliente")
