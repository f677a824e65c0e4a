import pandas as pd
import pytest

from zenith_dwh.presentation.views import PresentationViewBuilder
from zenith_dwh.storage.data_warehouse import DataWarehouse, ZenithDataWarehouse

from conftest import AS_OF


@pytest.fixture
def db_config(tmp_path):
    return {"storage": {"database": {"url": f"sqlite:///{tmp_path / 'dwh.db'}"}}}


def test_connection_string_defaults_to_postgres():
    warehouse_config = {"storage": {"database": {"postgresql": {
        "host": "db", "port": 5433, "database": "dwh", "username": "etl", "password": "p@ss#1",
    }}}}
    warehouse = DataWarehouse(warehouse_config)

    assert warehouse.is_postgres
    assert warehouse.schema == "public"
    assert warehouse.connection_string == "postgresql+psycopg2://etl:p%40ss%231@db:5433/dwh"


def test_publish_writes_silver_and_gold_tables(cleansed, db_config):
    pipeline, _ = cleansed
    views = PresentationViewBuilder(pipeline.clean_store, as_of=AS_OF).build_all()

    warehouse = ZenithDataWarehouse(db_config)
    result = warehouse.publish(pipeline.clean_store, views)

    assert result["status"] == "success"
    assert result["tables"]["silver_crm_customer_info"] == 3
    assert result["tables"]["gold_dim_customer"] == 3
    assert "silver_erp_territory" in warehouse.list_tables()
    assert "gold_fact_sales" in warehouse.list_tables()

    info = warehouse.get_table_info("gold_fact_sales")
    assert info["row_count"] == 3
    assert "delivery_status" in [c["column_name"] for c in info["columns"]]


def test_publish_replaces_existing_tables(cleansed, db_config):
    pipeline, _ = cleansed
    warehouse = ZenithDataWarehouse(db_config)
    warehouse.publish(pipeline.clean_store)
    warehouse.publish(pipeline.clean_store)

    assert warehouse.get_table_info("silver_erp_stores")["row_count"] == 3


def test_load_and_query(db_config):
    warehouse = DataWarehouse(db_config)
    df = pd.DataFrame({"store_id": [1, 2], "region": ["Europe", "Asia-Pacific"]})

    assert warehouse.load_data(df, "stores")
    result = warehouse.query_data("SELECT region FROM stores WHERE store_id = :id", {"id": 2})
    assert list(result["region"]) == ["Asia-Pacific"]

    warehouse.load_data(df.head(1), "stores", if_exists="replace")
    assert warehouse.get_table_info("stores")["row_count"] == 1


def test_query_error_is_raised(db_config):
    with pytest.raises(Exception):
        DataWarehouse(db_config).query_data("SELECT * FROM missing_table")
