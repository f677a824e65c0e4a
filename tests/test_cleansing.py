import pandas as pd
import pytest

from zenith_dwh.processing.cleansing import CleansingEngine, CodeMapping, DedupPolicy, UNMAPPED_PASSTHROUGH
from zenith_dwh.processing.datasets import DATASET_NAMES, LOAD_DATE_COLUMN, get_dataset
from zenith_dwh.processing.errors import TransformationError
from zenith_dwh.processing.resolvers import CategoryNormalizer, Resolvers, TerritoryResolver
from zenith_dwh.storage.record_store import RawRecordStore

from conftest import LOADED_AT, make_frames


def _row(df, column, value):
    rows = df[df[column] == value]
    assert len(rows) == 1
    return rows.iloc[0]


def test_customer_names_and_codes_are_normalized(cleansed):
    pipeline, _ = cleansed
    customers = pipeline.clean_store.get("crm_customer_info")

    michael = _row(customers, "customer_id", 7)
    assert michael["first_name"] == "Michael"
    assert michael["last_name"] == "Smith"
    assert michael["gender"] == "Unknown"
    assert michael["marital_status"] == "Divorced"

    john = _row(customers, "customer_id", 9)
    assert john["marital_status"] == "Unknown"
    assert john["gender"] == "Male"


def test_negative_return_amount_is_sign_corrected(cleansed):
    pipeline, _ = cleansed
    returns = pipeline.clean_store.get("erp_returns")
    assert _row(returns, "return_id", 42)["return_amount"] == 267


def test_spatial_country_follows_territory(cleansed):
    pipeline, _ = cleansed
    spatial = pipeline.clean_store.get("erp_spatial_data")

    assert _row(spatial, "customer_id", 9)["country"] == "Australia"
    assert _row(spatial, "customer_id", 9)["city"] == "Sydney"
    assert _row(spatial, "customer_id", 7)["country"] == "Germany"
    # city không có trong territory: giữ country gốc đã trim
    assert _row(spatial, "customer_id", 8)["country"] == "Vietnam"


def test_duplicate_order_keeps_latest_order_date(cleansed):
    pipeline, _ = cleansed
    sales = pipeline.clean_store.get("crm_sales_order")

    order = _row(sales, "order_number", "SO50000")
    assert order["order_date"] == pd.Timestamp("2023-02-01")
    assert order["quantity"] == 1


def test_subcategory_substitution_and_passthrough(cleansed):
    pipeline, _ = cleansed
    specs = pipeline.clean_store.get("erp_product_specs")

    assert _row(specs, "product_id", 102)["subcategory"] == "Tire"
    assert _row(specs, "product_id", 101)["subcategory"] == "Helmet"
    assert _row(specs, "product_id", 100)["subcategory"] == "Road"
    assert _row(specs, "product_id", 103)["subcategory"] == "Pedals"


def test_sales_values_validated_and_recomputed(cleansed):
    pipeline, _ = cleansed
    sales = pipeline.clean_store.get("crm_sales_order")

    bad = _row(sales, "order_number", "SO50001")
    assert pd.isna(bad["quantity"])
    assert pd.isna(bad["shipping_date"])
    assert bad["due_date"] == pd.Timestamp("2023-03-10")
    # quantity không hợp lệ: giữ sales_amount gốc
    assert bad["sales_amount"] == 99

    recomputed = _row(sales, "order_number", "SO50002")
    assert recomputed["sales_amount"] == 75


def test_product_cost_and_line(cleansed):
    pipeline, _ = cleansed
    products = pipeline.clean_store.get("crm_product_data")

    assert "start_date" in products.columns
    assert "start_data" not in products.columns
    assert pd.isna(_row(products, "product_id", 101)["cost"])
    assert _row(products, "product_id", 101)["product_line"] == "Mountain"
    assert _row(products, "product_id", 102)["product_line"] == "Unknown"


def test_store_codes_use_passthrough(cleansed):
    pipeline, _ = cleansed
    stores = pipeline.clean_store.get("erp_stores")

    assert _row(stores, "store_id", 1)["store_name"] == "Main Store"
    assert _row(stores, "store_id", 2)["store_type"] == "Online"
    assert _row(stores, "store_id", 3)["store_type"] == "Popup"
    assert _row(stores, "store_id", 3)["region"] == "Mars"


def test_keys_are_unique_and_present(cleansed):
    pipeline, _ = cleansed
    for name in DATASET_NAMES:
        spec = get_dataset(name)
        df = pipeline.clean_store.get(name)
        assert df[spec.key].notna().all(), name
        assert not df[spec.key].duplicated().any(), name
        if spec.key_is_text:
            assert (df[spec.key] == df[spec.key].str.strip()).all(), name


def test_row_counts_add_up(cleansed):
    _, report = cleansed
    for name, result in report.datasets.items():
        assert result.rows_read == result.rows_loaded + result.rows_rejected + result.rows_deduplicated, name

    customers = report.datasets["crm_customer_info"]
    assert customers.rows_rejected == 1
    assert customers.rows_deduplicated == 1
    assert customers.rows_loaded == 3


def test_enumerations_stay_in_vocabulary(cleansed):
    pipeline, _ = cleansed
    engine = pipeline.engine
    checks = [
        ("crm_customer_info", "marital_status"),
        ("crm_customer_info", "gender"),
        ("crm_product_data", "product_line"),
        ("erp_product_specs", "maintenance_required"),
        ("erp_product_specs", "product_line"),
    ]
    for dataset, column in checks:
        values = set(pipeline.clean_store.get(dataset)[column])
        assert values <= set(engine.vocabulary(dataset, column)), (dataset, column)


def test_numeric_and_date_invariants(cleansed):
    pipeline, _ = cleansed
    sales = pipeline.clean_store.get("crm_sales_order")
    returns = pipeline.clean_store.get("erp_returns")

    assert ((sales["quantity"] > 0) | sales["quantity"].isna()).all()
    assert ((sales["price"] > 0) | sales["price"].isna()).all()
    assert (returns["return_amount"] >= 0).all()

    valid = sales["quantity"].notna() & sales["price"].notna()
    expected = sales.loc[valid, "quantity"].astype(float) * sales.loc[valid, "price"]
    assert (sales.loc[valid, "sales_amount"] == expected).all()

    shipped = sales["shipping_date"].notna()
    assert (sales.loc[shipped, "shipping_date"] >= sales.loc[shipped, "order_date"]).all()


def test_cleansing_is_idempotent(pipeline):
    first = pipeline.run_cleansing(loaded_at=LOADED_AT)
    frames_first = {name: pipeline.clean_store.get(name) for name in first.succeeded()}

    second = pipeline.run_cleansing(loaded_at=pd.Timestamp("2024-07-01"))
    assert second.succeeded() == first.succeeded()

    for name, before in frames_first.items():
        after = pipeline.clean_store.get(name)
        pd.testing.assert_frame_equal(
            before.drop(columns=[LOAD_DATE_COLUMN]), after.drop(columns=[LOAD_DATE_COLUMN])
        )
        assert (after[LOAD_DATE_COLUMN] == pd.Timestamp("2024-07-01")).all()


def test_clean_columns_match_catalog(cleansed):
    pipeline, _ = cleansed
    for name in DATASET_NAMES:
        assert list(pipeline.clean_store.get(name).columns) == get_dataset(name).clean_columns


def test_latest_dedup_puts_null_order_dates_last():
    frame = pd.DataFrame([
        {"return_id": "1", "order_number": "SO1", "return_date": None, "return_reason": "Defective",
         "return_amount": "5"},
        {"return_id": "1", "order_number": "SO2", "return_date": "2023-01-01", "return_reason": "Defective",
         "return_amount": "6"},
    ])
    raw = RawRecordStore.from_frames(make_frames(erp_returns=frame)).get("erp_returns")

    outcome = CleansingEngine({}).cleanse("erp_returns", raw, loaded_at=LOADED_AT)
    assert list(outcome.frame["order_number"]) == ["SO2"]


def test_dedup_policy_override_from_config(raw_store):
    config = {"cleansing": {"deduplication": {"crm_customer_info": {"strategy": "first_seen"}}}}
    engine = CleansingEngine(config)
    outcome = engine.cleanse("crm_customer_info", raw_store.get("crm_customer_info"), loaded_at=LOADED_AT)

    anna = outcome.frame[outcome.frame["customer_id"] == 8].iloc[0]
    assert anna["marital_status"] == "Married"


def test_dedup_policy_rejects_unknown_field():
    config = {"cleansing": {"deduplication": {"erp_stores": {"strategy": "latest", "order_by": "opened_at"}}}}
    with pytest.raises(KeyError):
        CleansingEngine(config)


def test_latest_policy_needs_order_field():
    with pytest.raises(ValueError):
        DedupPolicy("latest")


def test_code_policy_override_to_passthrough(raw_store):
    config = {"cleansing": {"code_policies": {"crm_customer_info": {"marital_status": "passthrough"}}}}
    outcome = CleansingEngine(config).cleanse(
        "crm_customer_info", raw_store.get("crm_customer_info"), loaded_at=LOADED_AT
    )
    john = outcome.frame[outcome.frame["customer_id"] == 9].iloc[0]
    assert john["marital_status"] == "X"


def test_code_mapping_blank_is_unknown():
    mapping = CodeMapping("region", {"europe": "Europe"}, UNMAPPED_PASSTHROUGH)
    assert mapping.translate("   ") == "Unknown"
    assert mapping.translate(None) == "Unknown"
    assert mapping.translate(" EUROPE ") == "Europe"
    assert mapping.translate(" Mars ") == "Mars"


def test_stage_failure_is_wrapped(raw_store, monkeypatch):
    engine = CleansingEngine({})

    def broken(spec, df):
        raise RuntimeError("boom")

    monkeypatch.setattr(engine, "_recompute", broken)
    with pytest.raises(TransformationError) as excinfo:
        engine.cleanse("crm_sales_order", raw_store.get("crm_sales_order"), loaded_at=LOADED_AT)

    assert excinfo.value.dataset == "crm_sales_order"
    assert excinfo.value.stage == "recompute"
    assert isinstance(excinfo.value.cause, RuntimeError)


def test_empty_territory_resolver_keeps_original_country(raw_store):
    outcome = CleansingEngine({}).cleanse(
        "erp_spatial_data",
        raw_store.get("erp_spatial_data"),
        resolvers=Resolvers(TerritoryResolver.empty(), CategoryNormalizer()),
        loaded_at=LOADED_AT,
    )
    countries = dict(zip(outcome.frame["customer_id"], outcome.frame["country"]))
    assert countries == {9: "Germany", 7: "USA", 8: "Vietnam"}
    assert any("territory resolver is empty" in w for w in outcome.warnings)


def test_blank_spatial_values_become_unknown():
    frame = pd.DataFrame([{"customer_id": "5", "country": "  ", "city": " "}])
    raw = RawRecordStore.from_frames(make_frames(erp_spatial_data=frame)).get("erp_spatial_data")

    outcome = CleansingEngine({}).cleanse("erp_spatial_data", raw, loaded_at=LOADED_AT)
    row = outcome.frame.iloc[0]
    assert row["country"] == "Unknown"
    assert row["city"] == "Unknown"
