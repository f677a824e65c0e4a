# Presentation views (gold): dimension / fact dựng từ clean store
# dim_customer, dim_product, dim_store, fact_sales, fact_returns
# Mỗi lần build lấy một snapshot của clean store; builder không giữ state và không ghi gì.

import json
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from ..utils.logging_config import get_logger
from ..processing.datasets import LOAD_DATE_COLUMN, get_dataset
from ..processing.errors import DependencyOrderError
from ..processing.resolvers import UNKNOWN
from ..storage.record_store import CleanRecordStore

logger = get_logger(__name__)

AGE_GROUPS = (
    (20, "Under 20"),
    (30, "20-29"),
    (40, "30-39"),
    (50, "40-49"),
    (60, "50-59"),
)
OLDEST_GROUP = "60+"

ON_TIME = "On Time"
LATE = "Late"

# view -> (dataset chính, các dataset join thêm)
VIEW_SOURCES = {
    "dim_customer": ("crm_customer_info", ("erp_spatial_data", "erp_territory")),
    "dim_product": ("crm_product_data", ("erp_product_specs", "erp_category_map")),
    "dim_store": ("erp_stores", ()),
    "fact_sales": ("crm_sales_order", ()),
    "fact_returns": ("erp_returns", ()),
}


def _empty(dataset: str) -> pd.DataFrame:
    spec = get_dataset(dataset)
    df = spec.coerce(pd.DataFrame(columns=spec.columns)).rename(columns=dict(spec.renames))
    df[LOAD_DATE_COLUMN] = pd.Series(dtype="datetime64[ns]")
    return df


def _or_unknown(values: pd.Series) -> pd.Series:
    return values.astype(object).where(values.notna(), UNKNOWN)


def completed_years(birthdates: pd.Series, as_of: pd.Timestamp) -> pd.Series:
    # tuổi tròn tại ngày as_of (chưa tới sinh nhật năm nay thì trừ 1)
    birth = pd.to_datetime(birthdates)
    years = as_of.year - birth.dt.year
    before_birthday = (birth.dt.month > as_of.month) | (
        (birth.dt.month == as_of.month) & (birth.dt.day > as_of.day)
    )
    age = years - before_birthday.astype(int)
    return age.where(birth.notna()).astype("Int64")


def age_group(age) -> str:
    if age is None or pd.isna(age):
        return UNKNOWN
    for upper, label in AGE_GROUPS:
        if age < upper:
            return label
    return OLDEST_GROUP


def _days_between(later: pd.Series, earlier: pd.Series) -> pd.Series:
    return (pd.to_datetime(later) - pd.to_datetime(earlier)).dt.days.astype("Int64")


def _date_parts(values: pd.Series, prefix: str) -> Dict[str, pd.Series]:
    dates = pd.to_datetime(values)
    return {
        f"{prefix}_year": dates.dt.year.astype("Int64"),
        f"{prefix}_month": dates.dt.month.astype("Int64"),
        f"{prefix}_month_name": dates.dt.month_name().astype(object).where(dates.notna(), None),
    }


class PresentationViewBuilder:

    def __init__(self, clean_store: CleanRecordStore, as_of: Optional[datetime] = None):
        self.clean_store = clean_store
        self.as_of = pd.Timestamp(as_of or datetime.now()).normalize()
        self._builders: Dict[str, Callable[[Dict[str, pd.DataFrame]], pd.DataFrame]] = {
            "dim_customer": self._dim_customer,
            "dim_product": self._dim_product,
            "dim_store": self._dim_store,
            "fact_sales": self._fact_sales,
            "fact_returns": self._fact_returns,
        }

    @property
    def view_names(self) -> List[str]:
        return list(self._builders)

    def dim_customer(self) -> pd.DataFrame:
        return self.build("dim_customer")

    def dim_product(self) -> pd.DataFrame:
        return self.build("dim_product")

    def dim_store(self) -> pd.DataFrame:
        return self.build("dim_store")

    def fact_sales(self) -> pd.DataFrame:
        return self.build("fact_sales")

    def fact_returns(self) -> pd.DataFrame:
        return self.build("fact_returns")

    def build(self, view: str) -> pd.DataFrame:
        if view not in self._builders:
            raise ValueError(f"Unknown view: {view}")
        frames = self._snapshot(VIEW_SOURCES[view])
        return self._build_from(view, frames)

    def build_all(self, views: Optional[Iterable[str]] = None) -> Dict[str, pd.DataFrame]:
        # một snapshot cho tất cả view: các view nhất quán với nhau
        views = list(views) if views is not None else self.view_names
        frames = self.clean_store.snapshot()
        result = {}
        for view in views:
            primary = VIEW_SOURCES[view][0]
            if frames.get(primary) is None:
                logger.warning("View skipped, source not cleansed", view=view, dataset=primary)
                continue
            result[view] = self._build_from(view, frames)
        logger.info("Presentation views built", views=list(result))
        return result

    def _snapshot(self, sources) -> Dict[str, Optional[pd.DataFrame]]:
        primary, joined = sources
        return self.clean_store.snapshot([primary, *joined])

    def _build_from(self, view: str, frames: Dict[str, Optional[pd.DataFrame]]) -> pd.DataFrame:
        primary, joined = VIEW_SOURCES[view]
        if frames.get(primary) is None:
            raise DependencyOrderError(
                f"View {view} needs clean {primary}, which has not been populated",
                details={"view": view, "dataset": primary},
            )
        # dataset join thiếu -> coi như rỗng, cột liên quan thành Unknown
        inputs = {name: (frames.get(name) if frames.get(name) is not None else _empty(name))
                  for name in (primary, *joined)}
        df = self._builders[view](inputs)
        return df.reset_index(drop=True)

    # customer LEFT JOIN spatial (customer_id) LEFT JOIN territory (city)
    def _dim_customer(self, frames: Dict[str, pd.DataFrame]) -> pd.DataFrame:
        customers = frames["crm_customer_info"]
        spatial = frames["erp_spatial_data"][["customer_id", "city", "country"]].drop_duplicates("customer_id")
        territory = frames["erp_territory"][["city", "continent"]].drop_duplicates("city")

        df = customers.merge(spatial, on="customer_id", how="left")
        df = df.merge(territory, on="city", how="left")

        df["full_name"] = (
            df["first_name"].fillna("").astype(str) + " " + df["last_name"].fillna("").astype(str)
        ).str.strip()
        df["age"] = completed_years(df["birthdate"], self.as_of)
        df["age_group"] = df["age"].map(age_group).astype(object)
        for column in ("city", "country", "continent"):
            df[column] = _or_unknown(df[column])

        return df[[
            "customer_id", "customer_number", "first_name", "last_name", "full_name",
            "marital_status", "gender", "birthdate", "age", "age_group", "create_date",
            "city", "country", "continent",
        ]]

    # product LEFT JOIN product_specs (product_id) LEFT JOIN category map (subcategory)
    def _dim_product(self, frames: Dict[str, pd.DataFrame]) -> pd.DataFrame:
        products = frames["crm_product_data"]
        specs = frames["erp_product_specs"][["product_id", "subcategory", "maintenance_required"]]
        specs = specs.drop_duplicates("product_id")

        # một category cho mỗi subcategory (category_id nhỏ nhất), bỏ nhãn Unknown
        category_map = frames["erp_category_map"]
        category_map = category_map[category_map["subcategory"].notna() & (category_map["subcategory"] != UNKNOWN)]
        category_map = (
            category_map.sort_values("category_id", kind="mergesort")
            .drop_duplicates("subcategory")[["subcategory", "category"]]
            .rename(columns={"subcategory": "_map_subcategory"})
        )

        df = products.merge(specs, on="product_id", how="left")
        df = df.merge(category_map, left_on="subcategory", right_on="_map_subcategory", how="left")

        df["category"] = _or_unknown(df["category"])
        df["subcategory"] = _or_unknown(df["_map_subcategory"])
        df["maintenance_required"] = _or_unknown(df["maintenance_required"])

        return df[[
            "product_id", "product_number", "product_name", "cost", "product_line", "start_date",
            "category", "subcategory", "maintenance_required",
        ]]

    def _dim_store(self, frames: Dict[str, pd.DataFrame]) -> pd.DataFrame:
        return frames["erp_stores"][["store_id", "store_name", "store_type", "region"]].copy()

    def _fact_sales(self, frames: Dict[str, pd.DataFrame]) -> pd.DataFrame:
        df = frames["crm_sales_order"].copy()
        for column, values in _date_parts(df["order_date"], "order").items():
            df[column] = values
        df["days_to_ship"] = _days_between(df["shipping_date"], df["order_date"])
        df["days_to_due"] = _days_between(df["due_date"], df["order_date"])

        shipping = pd.to_datetime(df["shipping_date"])
        due = pd.to_datetime(df["due_date"])
        df["delivery_status"] = np.select(
            [(shipping <= due).to_numpy(dtype=bool), (shipping > due).to_numpy(dtype=bool)],
            [ON_TIME, LATE],
            default=UNKNOWN,
        )
        df["delivery_status"] = df["delivery_status"].astype(object)

        return df[[
            "order_number", "product_id", "customer_id", "store_id",
            "order_date", "shipping_date", "due_date",
            "order_year", "order_month", "order_month_name",
            "quantity", "price", "sales_amount",
            "days_to_ship", "days_to_due", "delivery_status",
        ]]

    def _fact_returns(self, frames: Dict[str, pd.DataFrame]) -> pd.DataFrame:
        df = frames["erp_returns"].copy()
        for column, values in _date_parts(df["return_date"], "return").items():
            df[column] = values
        return df[[
            "return_id", "order_number", "return_date",
            "return_year", "return_month", "return_month_name",
            "return_reason", "return_amount",
        ]]


def main():
    import argparse

    from ..utils.config import ConfigManager
    from ..utils.logging_config import setup_logging
    from ..processing.etl_pipeline import ETLPipeline

    parser = argparse.ArgumentParser(description="Build presentation views")
    parser.add_argument("--config", default="config/config.yaml", help="Configuration file")
    parser.add_argument("--as-of", help="Reference date for age calculation (YYYY-MM-DD)")

    args = parser.parse_args()

    config_manager = ConfigManager()
    config = config_manager.load_config(args.config)
    setup_logging(config_manager.get_monitoring_config().get("logging"))

    pipeline = ETLPipeline(config)
    pipeline.ingest()
    pipeline.run_cleansing()

    views = PresentationViewBuilder(pipeline.clean_store, as_of=args.as_of).build_all()
    print(json.dumps({name: len(df) for name, df in views.items()}, indent=2))


if __name__ == "__main__":
    main()
