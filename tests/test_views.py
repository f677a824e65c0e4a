import pandas as pd
import pytest

from zenith_dwh.presentation.views import PresentationViewBuilder, age_group, completed_years
from zenith_dwh.processing.errors import DependencyOrderError
from zenith_dwh.storage.record_store import CleanRecordStore

from conftest import AS_OF, LOADED_AT


@pytest.fixture
def builder(cleansed):
    pipeline, _ = cleansed
    return PresentationViewBuilder(pipeline.clean_store, as_of=AS_OF)


def _by(df, column):
    return df.set_index(column)


def test_completed_years_counts_birthday_on_as_of():
    birthdates = pd.Series(pd.to_datetime(["1985-06-15", "1985-06-16", None]))
    ages = completed_years(birthdates, pd.Timestamp("2024-06-15"))
    assert ages.iloc[0] == 39
    assert ages.iloc[1] == 38
    assert pd.isna(ages.iloc[2])


def test_age_group_boundaries():
    assert age_group(19) == "Under 20"
    assert age_group(20) == "20-29"
    assert age_group(59) == "50-59"
    assert age_group(60) == "60+"
    assert age_group(None) == "Unknown"


def test_dim_customer(builder):
    customers = _by(builder.dim_customer(), "customer_id")
    assert len(customers) == 3

    michael = customers.loc[7]
    assert michael["full_name"] == "Michael Smith"
    assert michael["age"] == 39
    assert michael["age_group"] == "30-39"
    assert (michael["city"], michael["country"], michael["continent"]) == ("Berlin", "Germany", "Europe")

    anna = customers.loc[8]
    assert anna["age"] == 23
    assert anna["age_group"] == "20-29"
    assert (anna["city"], anna["country"], anna["continent"]) == ("Atlantis", "Vietnam", "Unknown")

    john = customers.loc[9]
    assert john["age"] == 73
    assert john["age_group"] == "60+"
    assert (john["city"], john["country"], john["continent"]) == ("Sydney", "Australia", "Oceania")


def test_dim_customer_without_spatial_data(pipeline):
    pipeline.run_cleansing("crm_customer_info", loaded_at=LOADED_AT)
    customers = PresentationViewBuilder(pipeline.clean_store, as_of=AS_OF).dim_customer()

    assert len(customers) == 3
    assert set(customers["city"]) == {"Unknown"}
    assert set(customers["continent"]) == {"Unknown"}


def test_dim_product(builder):
    products = _by(builder.dim_product(), "product_id")

    assert tuple(products.loc[100, ["category", "subcategory", "maintenance_required"]]) == ("Bikes", "Road", "No")
    assert tuple(products.loc[101, ["category", "subcategory", "maintenance_required"]]) == (
        "Accessories", "Helmet", "Yes")
    assert tuple(products.loc[102, ["category", "subcategory", "maintenance_required"]]) == (
        "Accessories", "Tire", "Unknown")
    assert "start_date" in products.columns


def test_dim_product_ignores_unknown_subcategory_rows(cleansed):
    pipeline, _ = cleansed
    category_map = pipeline.clean_store.get("erp_category_map")
    extra = category_map.iloc[[0]].assign(category_id="ZZ_UN", category="Misc", subcategory="Unknown")
    pipeline.clean_store.replace("erp_category_map", pd.concat([category_map, extra], ignore_index=True))

    specs = pipeline.clean_store.get("erp_product_specs")
    specs.loc[specs["product_id"] == 102, "subcategory"] = "Unknown"
    pipeline.clean_store.replace("erp_product_specs", specs)

    products = _by(PresentationViewBuilder(pipeline.clean_store, as_of=AS_OF).dim_product(), "product_id")
    assert products.loc[102, "category"] == "Unknown"
    assert products.loc[102, "subcategory"] == "Unknown"


def test_dim_store(builder):
    stores = builder.dim_store()
    assert list(stores.columns) == ["store_id", "store_name", "store_type", "region"]
    assert len(stores) == 3


def test_fact_sales(builder):
    sales = _by(builder.fact_sales(), "order_number")

    late = sales.loc["SO50002"]
    assert late["delivery_status"] == "Late"
    assert late["days_to_ship"] == 4
    assert late["days_to_due"] == 2

    # shipping_date bị null khi cleansing -> không xác định
    assert sales.loc["SO50001", "delivery_status"] == "Unknown"
    assert pd.isna(sales.loc["SO50001", "days_to_ship"])

    on_time = sales.loc["SO50000"]
    assert on_time["delivery_status"] == "On Time"
    assert on_time["order_month_name"] == "February"
    assert on_time["order_year"] == 2023


def test_fact_returns(builder):
    returns = builder.fact_returns()
    assert list(returns.columns) == [
        "return_id", "order_number", "return_date",
        "return_year", "return_month", "return_month_name",
        "return_reason", "return_amount",
    ]
    assert _by(returns, "return_id").loc[42, "return_amount"] == 267


def test_missing_primary_source_raises():
    builder = PresentationViewBuilder(CleanRecordStore(), as_of=AS_OF)
    with pytest.raises(DependencyOrderError):
        builder.dim_store()


def test_unknown_view_is_rejected(builder):
    with pytest.raises(ValueError):
        builder.build("dim_date")


def test_build_all_skips_views_without_primary(pipeline):
    pipeline.run_cleansing(["erp_stores", "erp_returns"], loaded_at=LOADED_AT)
    views = PresentationViewBuilder(pipeline.clean_store, as_of=AS_OF).build_all()
    assert set(views) == {"dim_store", "fact_returns"}


def test_views_do_not_modify_clean_store(cleansed):
    pipeline, _ = cleansed
    before = pipeline.clean_store.get("crm_customer_info")
    PresentationViewBuilder(pipeline.clean_store, as_of=AS_OF).build_all()
    pd.testing.assert_frame_equal(before, pipeline.clean_store.get("crm_customer_info"))
