import pytest

from backend.app.services.run_summary import ERROR_STAGE_VIN, PipelineStage, RunStatus, RunSummary


def test_summary_collects_counts_and_errors():
    summary = RunSummary(source_name="file:listings.json")
    summary.fetched = 3
    summary.record_rejection("price_range")
    summary.record_rejection("price_range")
    summary.record_error(ERROR_STAGE_VIN, "timed out", vin="JTMRFREV5JJ123456")
    summary.advance(PipelineStage.VIN_VALIDATED)

    assert summary.rejections == {"price_range": 2}
    assert summary.error_count == 1
    assert summary.execution_time_ms is None
    assert summary.status is RunStatus.RUNNING


def test_finalize_locks_the_summary():
    summary = RunSummary()
    summary.stored = 2
    summary.finalize(RunStatus.COMPLETED)

    assert summary.finalized
    assert summary.completed_at is not None
    assert summary.execution_time_ms >= 0
    with pytest.raises(AttributeError):
        summary.stored = 3
    with pytest.raises(AttributeError):
        summary.record_error("store", "late")
    with pytest.raises(AttributeError):
        summary.finalize(RunStatus.FAILED)
    with pytest.raises(TypeError):
        summary.rejections["late"] = 1


def test_incomplete_flag_and_dict_shape():
    summary = RunSummary()
    summary.record_error(ERROR_STAGE_VIN, "timed out", vin="JTMRFREV5JJ123456")
    summary.finalize(RunStatus.INCOMPLETE, incomplete=True)
    data = summary.to_dict()
    assert data["status"] == "incomplete"
    assert data["incomplete"] is True
    assert data["stats"]["errors"] == 1
    assert data["errors"] == [{"stage": "vin_validation", "message": "timed out", "vin": "JTMRFREV5JJ123456"}]
