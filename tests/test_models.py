"""Tests for redraw models"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from redraw.models import (
    RATIO_SPECS,
    BrandInfo,
    CreateTaskRequest,
    PageInput,
    TaskRecord,
    compute_progress,
)


@pytest.mark.parametrize(
    "completed,total,expected",
    [(0, 12, 0), (10, 12, 83), (1, 8, 13), (1, 3, 33), (2, 3, 67), (12, 12, 100)],
)
def test_compute_progress_rounds_half_up(completed, total, expected):
    assert compute_progress(completed, total) == expected


def test_compute_progress_empty_task():
    assert compute_progress(0, 0) == 0


def test_ratio_table():
    """Every aspect ratio maps to a fixed canvas and orientation"""
    assert RATIO_SPECS["16:9"].resolution == "1920x1080 pixels (LANDSCAPE)"
    assert RATIO_SPECS["4:3"].resolution == "1440x1080 pixels (LANDSCAPE)"
    assert RATIO_SPECS["9:16"].resolution == "1080x1920 pixels (PORTRAIT)"
    assert RATIO_SPECS["3:4"].resolution == "1080x1440 pixels (PORTRAIT)"
    assert RATIO_SPECS["1:1"].resolution == "1080x1080 pixels (SQUARE)"


def test_page_input_accepts_camel_case():
    page = PageInput.model_validate(
        {"pageNumber": 3, "imageBase64": "abc", "textContent": "Hello"}
    )
    assert page.page_number == 3
    assert page.image_base64 == "abc"
    assert page.to_json_dict() == {
        "pageNumber": 3,
        "imageBase64": "abc",
        "textContent": "Hello",
    }


def test_page_numbers_start_at_one():
    with pytest.raises(ValidationError):
        PageInput(page_number=0, image_base64="abc")


def test_create_request_rejects_unknown_ratio():
    with pytest.raises(ValidationError):
        CreateTaskRequest.model_validate({"aspectRatio": "2:1"})


def test_summary_counts_results_and_brand():
    now = datetime.now(timezone.utc)
    record = TaskRecord(
        id="abc",
        created_at=now,
        updated_at=now,
        total_pages=3,
        pages=[PageInput(page_number=i, image_base64="x") for i in (1, 2, 3)],
        brand_info=BrandInfo(name="Acme"),
        results={1: "data:image/png;base64,a", 3: "data:image/png;base64,c"},
        failed_pages=[2],
    )

    summary = record.summary().to_json_dict()
    assert summary["completedCount"] == 2
    assert summary["brandName"] == "Acme"
    assert summary["failedPages"] == [2]
    assert "results" not in summary
    assert [p.page_number for p in record.pending_pages()] == [2]


def test_summary_brand_defaults_to_unknown():
    now = datetime.now(timezone.utc)
    record = TaskRecord(
        id="abc",
        created_at=now,
        updated_at=now,
        total_pages=1,
        pages=[PageInput(page_number=1, image_base64="x")],
        brand_info=BrandInfo(),
    )
    assert record.summary().brand_name == "Unknown"
