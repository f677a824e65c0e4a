import json

import pandas as pd
import pytest

from zenith_dwh.processing.data_quality import (
    CROSS_SOURCE,
    DataQualityChecker,
    build_catalog,
    render_report,
)
from zenith_dwh.storage.record_store import RawRecordStore

from conftest import AS_OF, make_frames


@pytest.fixture
def report(raw_store):
    checker = DataQualityChecker({})
    return checker.check_data_quality(
        raw_store.frames(), as_of=AS_OF, unavailable=raw_store.unavailable_reasons()
    )


def test_catalog_ids_are_unique_and_cover_every_dataset():
    catalog = build_catalog()
    ids = [c.check_id for c in catalog]
    assert len(ids) == len(set(ids))
    letters = {c.check_id[0] for c in catalog if c.dataset != CROSS_SOURCE}
    assert letters == set("ABCEFGHIJ")
    assert {"K1", "K2", "K3", "K4", "K5", "K6", "L1", "D1"} <= set(ids)


def test_completeness_counts(report):
    assert report.get("A1a").metric == 1
    assert report.get("A1b").metric == 0
    assert report.get("B1d").metric == 0


def test_duplicate_groups(report):
    assert report.get("A2a").metric == [(8, 2)]
    assert report.get("C2a").metric == [("SO50000", 2)]
    assert report.get("H2a").metric == [(43, 2)]
    # " Sydney" và "Sydney" khác nhau ở dạng raw
    assert report.get("J2a").metric == []


def test_invalid_codes_are_grouped_by_raw_value(report):
    assert report.get("A3f").metric == [("D", 1), ("M", 1), ("S", 2), ("X", 1)]
    assert report.get("A3h").metric == [("F", 1), ("n/a", 1)]
    assert report.get("F3c").metric == [("Y", 1), ("maybe", 1), ("no", 1)]


def test_distinct_values_are_probes(report):
    result = report.get("A3g")
    assert result.probe
    assert result.issue_count == 0
    assert ("n/a", 1) in result.metric


def test_whitespace_and_pattern_checks(report):
    assert report.get("A3a").metric == 1
    assert report.get("C3d").metric == [{"order_number": " SO50001 "}]
    assert report.get("A3i").metric == []
    assert report.get("E3d").metric == []


def test_customer_number_suffix_mismatch(report):
    assert report.get("A5a").metric == [{"customer_id": 9, "customer_number": "CUST00019"}]


def test_sales_amount_mismatch_has_samples(report):
    result = report.get("C4a")
    assert result.metric == 2
    assert {s["order_number"] for s in result.samples} == {" SO50001 ", "SO50002"}
    sample = next(s for s in result.samples if s["order_number"] == "SO50002")
    assert sample["expected_sales_amount"] == 75
    assert sample["difference"] == -5


def test_sales_date_consistency(report):
    assert report.get("C5b").metric == 1
    assert report.get("C5d").metric == 1
    assert report.get("C5a").metric == 0
    profile = report.get("C5f").metric[0]
    assert profile["earliest_order"] == "2023-01-01"
    assert profile["latest_order"] == "2023-04-01"


def test_referential_checks(report):
    assert report.get("C6a").metric == 0
    assert report.get("C6b").metric == 0
    assert report.get("C6c").metric == 0
    assert report.get("K2").metric == 1
    assert report.get("K1").metric == 0
    assert report.get("H5a").metric == 0
    assert report.get("K6").metric == [("Asia-Pacific", 1), ("Mars", 1)]


def test_returns_checks(report):
    negative = report.get("H3a")
    assert negative.metric == 1
    assert negative.samples[0]["return_id"] == 42
    over_refunds = report.get("H6a").metric
    assert [r["return_id"] for r in over_refunds] == [43]


def test_spatial_checks(report):
    mismatched = {r["customer_id"] for r in report.get("I4a").metric}
    assert mismatched == {7, 9}
    assert report.get("I4b").metric == [("Atlantis", 1)]
    # dòng customer_id null cũng không có spatial
    assert report.get("I5b").metric == 1


def test_subcategory_checks(report):
    assert len(report.get("F4a").metric) == 3
    assert report.get("E3e").metric == []


def test_birthdate_boundaries():
    customers = pd.DataFrame([
        {"customer_id": "1", "customer_number": "CUST00001", "first_name": "A", "last_name": "B",
         "marital_status": "S", "gender": "Male", "birthdate": "1900-01-01", "create_date": "2020-01-01"},
        {"customer_id": "2", "customer_number": "CUST00002", "first_name": "C", "last_name": "D",
         "marital_status": "S", "gender": "Male", "birthdate": "2015-05-05", "create_date": "2014-01-01"},
        {"customer_id": "3", "customer_number": "CUST00003", "first_name": "E", "last_name": "F",
         "marital_status": "S", "gender": "Male", "birthdate": "2030-01-01", "create_date": "2030-02-01"},
    ])
    frames = RawRecordStore.from_frames(make_frames(crm_customer_info=customers)).frames()
    report = DataQualityChecker({}).check_data_quality(frames, scope="crm_customer_info", as_of=AS_OF)

    assert report.get("A4a").metric == 1
    assert report.get("A4b").metric == 1
    assert [r["customer_id"] for r in report.get("A4c").metric] == [2, 3]
    assert report.get("A4e").metric == 1


def test_scope_limits_checks(raw_store):
    report = DataQualityChecker({}).check_data_quality(raw_store.frames(), scope=["erp_stores"], as_of=AS_OF)
    assert {r.dataset for r in report.results} == {"erp_stores"}
    assert report.get("G3b").metric == [("Popup", 1), ("online", 1)]


def test_unknown_scope_is_rejected(raw_store):
    with pytest.raises(ValueError):
        DataQualityChecker({}).check_data_quality(raw_store.frames(), scope="stores")


def test_unavailable_input_is_reported_per_check():
    frames = make_frames()
    del frames["erp_territory"]
    store = RawRecordStore.from_frames(frames)
    report = DataQualityChecker({}).check_data_quality(
        store.frames(), as_of=AS_OF, unavailable=store.unavailable_reasons()
    )

    assert report.get("J1a").error is not None
    assert "erp_territory" in report.get("I4a").error
    assert report.get("I1a").error is None
    assert report.get("I1a").metric == 0


def test_failing_check_does_not_stop_others(raw_store):
    frames = raw_store.frames()
    frames["erp_stores"] = frames["erp_stores"].drop(columns=["region"])
    report = DataQualityChecker({}).check_data_quality(frames, scope="erp_stores", as_of=AS_OF)

    assert report.get("G1d").error is not None
    assert report.get("G1a").error is None
    assert report.get("G1a").metric == 0


def test_configured_outlier_threshold(raw_store):
    checker = DataQualityChecker({"quality": {"cost_outlier_threshold": 1000}})
    report = checker.check_data_quality(raw_store.frames(), scope="crm_product_data", as_of=AS_OF)
    assert [r["product_id"] for r in report.get("B3b").metric] == [100]


def test_report_summary_and_json(report):
    summary = report.summary()
    assert summary["total_checks"] == len(report.results)
    assert summary["checks_failed_to_run"] == 0
    assert summary["issues_by_category"]["uniqueness"] >= 3

    payload = json.loads(json.dumps(report.to_dict(), default=str))
    assert payload["layer"] == "raw"
    assert payload["row_counts"]["crm_customer_info"] == 5
    assert "A1a" in render_report(report)


def test_clean_layer_uses_original_column_names(cleansed):
    pipeline, _ = cleansed
    report = pipeline.run_quality_checks("crm_product_data", layer="clean", as_of=AS_OF)
    assert report.get("B1f").error is None
    assert report.get("B2a").metric == []
