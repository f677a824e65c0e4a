from datetime import datetime

import pandas as pd
import pytest

from zenith_dwh.processing.etl_pipeline import ETLPipeline
from zenith_dwh.storage.record_store import CleanRecordStore, RawRecordStore

LOADED_AT = datetime(2024, 6, 15, 8, 0, 0)
AS_OF = datetime(2024, 6, 15)

CUSTOMERS = [
    {"customer_id": "7", "customer_number": "CUST00007", "first_name": "  michael ", "last_name": "smith",
     "marital_status": "D", "gender": "n/a", "birthdate": "1985-06-15", "create_date": "2021-01-10"},
    {"customer_id": "8", "customer_number": "CUST00008", "first_name": "ANNA", "last_name": "Lee ",
     "marital_status": "M", "gender": "Female", "birthdate": "2001-02-03", "create_date": "2021-02-01"},
    {"customer_id": "8", "customer_number": "CUST00008", "first_name": "anna", "last_name": "lee",
     "marital_status": "S", "gender": "F", "birthdate": "2001-02-03", "create_date": "2022-05-01"},
    {"customer_id": "9", "customer_number": "CUST00019", "first_name": "john", "last_name": "doe",
     "marital_status": "X", "gender": "Male", "birthdate": "1950-12-31", "create_date": "2020-03-03"},
    {"customer_id": None, "customer_number": "CUST00010", "first_name": "no", "last_name": "key",
     "marital_status": "S", "gender": "Male", "birthdate": "1990-01-01", "create_date": "2020-01-01"},
]

PRODUCTS = [
    {"product_id": "100", "product_number": "BK-R9-100", "product_name": "Road Bike 100", "cost": "1200.50",
     "product_line": "Road", "start_data": "2015-01-01"},
    {"product_id": "101", "product_number": "HL-U5-101", "product_name": "Helmet", "cost": "-5",
     "product_line": " mountain ", "start_data": "2019-07-01"},
    {"product_id": "102", "product_number": "TI-T1-102", "product_name": "Tire", "cost": "25",
     "product_line": "Other", "start_data": "2018-01-01"},
]

SALES = [
    {"order_number": "SO50000", "product_id": "100", "customer_id": "7", "store_id": "1",
     "order_date": "2023-01-01", "quantity": "2", "price": "1200.50", "shipping_date": "2023-01-05",
     "due_date": "2023-01-10", "sales_amount": "2401.00"},
    {"order_number": "SO50000", "product_id": "100", "customer_id": "7", "store_id": "1",
     "order_date": "2023-02-01", "quantity": "1", "price": "1200.50", "shipping_date": "2023-02-03",
     "due_date": "2023-02-08", "sales_amount": "1200.50"},
    {"order_number": " SO50001 ", "product_id": "101", "customer_id": "8", "store_id": "2",
     "order_date": "2023-03-01", "quantity": "0", "price": "30", "shipping_date": "2023-02-20",
     "due_date": "2023-03-10", "sales_amount": "99"},
    {"order_number": "SO50002", "product_id": "102", "customer_id": "9", "store_id": "3",
     "order_date": "2023-04-01", "quantity": "3", "price": "25", "shipping_date": "2023-04-05",
     "due_date": "2023-04-03", "sales_amount": "70"},
]

CATEGORY_MAP = [
    {"category_id": "AC_HE", "category": "Accessories", "subcategory": "Helmet"},
    {"category_id": "AC_TI", "category": "Accessories", "subcategory": "Tire"},
    {"category_id": "BI_RB", "category": "Bikes", "subcategory": "Road"},
    {"category_id": "CO_PE", "category": "Components", "subcategory": "Pedals"},
]

PRODUCT_SPECS = [
    {"product_id": "100", "subcategory": "Road Bikes", "maintenance_required": "no", "product_line": "Road"},
    {"product_id": "101", "subcategory": "Helmets", "maintenance_required": "Y", "product_line": "Mountain"},
    {"product_id": "102", "subcategory": "Tires", "maintenance_required": "maybe", "product_line": "Standard"},
    {"product_id": "103", "subcategory": "Pedals", "maintenance_required": "No", "product_line": "Touring"},
]

STORES = [
    {"store_id": "1", "store_name": " Main Store ", "store_type": "Flagship", "region": "Europe"},
    {"store_id": "2", "store_name": "Web", "store_type": "online", "region": "Asia-Pacific"},
    {"store_id": "3", "store_name": "Kiosk", "store_type": "Popup", "region": "Mars"},
]

RETURNS = [
    {"return_id": "42", "order_number": "SO50000", "return_date": "2023-02-10", "return_reason": "Defective",
     "return_amount": "-267"},
    {"return_id": "43", "order_number": " SO50002", "return_date": "2023-04-20", "return_reason": "wrong item",
     "return_amount": "75"},
    {"return_id": "43", "order_number": "SO50002", "return_date": "2023-04-25", "return_reason": "Wrong Item",
     "return_amount": "70"},
]

SPATIAL = [
    {"customer_id": "9", "country": "Germany", "city": "Sydney"},
    {"customer_id": "7", "country": "USA", "city": "Berlin"},
    {"customer_id": "8", "country": " Vietnam ", "city": "Atlantis"},
]

TERRITORY = [
    {"city": "Sydney", "country": "Australia", "continent": "Oceania"},
    {"city": "Berlin", "country": "Germany", "continent": "Europe"},
    {"city": " Sydney", "country": "Unknown", "continent": "Oceania"},
]

RAW_ROWS = {
    "crm_customer_info": CUSTOMERS,
    "crm_product_data": PRODUCTS,
    "crm_sales_order": SALES,
    "erp_category_map": CATEGORY_MAP,
    "erp_product_specs": PRODUCT_SPECS,
    "erp_stores": STORES,
    "erp_returns": RETURNS,
    "erp_spatial_data": SPATIAL,
    "erp_territory": TERRITORY,
}


def make_frames(**overrides):
    frames = {name: pd.DataFrame([dict(r) for r in rows]) for name, rows in RAW_ROWS.items()}
    frames.update(overrides)
    return frames


@pytest.fixture
def raw_frames():
    return make_frames()


@pytest.fixture
def raw_store(raw_frames):
    return RawRecordStore.from_frames(raw_frames)


@pytest.fixture
def pipeline(raw_store):
    return ETLPipeline({}, raw_store=raw_store, clean_store=CleanRecordStore())


@pytest.fixture
def cleansed(pipeline):
    report = pipeline.run_cleansing(loaded_at=LOADED_AT)
    return pipeline, report


def write_csv_sources(frames, crm_dir, erp_dir):
    crm_dir.mkdir(parents=True, exist_ok=True)
    erp_dir.mkdir(parents=True, exist_ok=True)
    for name, df in frames.items():
        target = crm_dir if name.startswith("crm_") else erp_dir
        df.to_csv(target / f"{name}.csv", index=False, na_rep="")
