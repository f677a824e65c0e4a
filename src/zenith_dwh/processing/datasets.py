# Danh mục 9 dataset nguồn (CRM + ERP)
# Mỗi dataset: tên, ký tự định danh cho check id, hệ nguồn, business key,
# cột và kiểu dữ liệu thô, cột bị đổi tên ở lớp clean.

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

INT = "int"
DECIMAL = "decimal"
DATE = "date"
TEXT = "text"

LOAD_DATE_COLUMN = "dwh_load_date"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: str = TEXT
    # cột optional được thêm vào (toàn null) khi file nguồn không có
    required: bool = True


@dataclass(frozen=True)
class DatasetSpec:
    name: str
    letter: str
    source: str
    key: str
    fields: Tuple[FieldSpec, ...]
    renames: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
    depends_on: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def columns(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def required_columns(self) -> List[str]:
        return [f.name for f in self.fields if f.required]

    @property
    def clean_columns(self) -> List[str]:
        rename_map = dict(self.renames)
        return [rename_map.get(c, c) for c in self.columns] + [LOAD_DATE_COLUMN]

    @property
    def key_is_text(self) -> bool:
        return self.field(self.key).kind == TEXT

    def field(self, name: str) -> FieldSpec:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"{self.name} has no field '{name}'")

    def columns_of_kind(self, kind: str) -> List[str]:
        return [f.name for f in self.fields if f.kind == kind]

    def coerce(self, df: pd.DataFrame) -> pd.DataFrame:
        # Ép kiểu dữ liệu thô theo khai báo: int -> Int64, decimal -> float, date -> datetime64
        # Text giữ nguyên (kể cả khoảng trắng), '' coi như null.
        df = df.copy()
        for f in self.fields:
            if f.name not in df.columns:
                if f.required:
                    raise KeyError(f"{self.name} is missing required column '{f.name}'")
                df[f.name] = None

            col = df[f.name]
            if f.kind == TEXT:
                col = col.astype(object)
                df[f.name] = col.mask(col.isna() | (col == ""), None)
                continue

            # cột chữ có thể là object hoặc str (pandas 3); ô toàn khoảng trắng -> null
            is_text = pd.api.types.is_string_dtype(col) or col.dtype == object
            if is_text:
                col = col.astype(object)
                col = col.where(col.isna(), col.astype(str).str.strip())
                col = col.mask(col == "")

            if f.kind == INT:
                df[f.name] = pd.to_numeric(col, errors="raise").astype("Int64")
            elif f.kind == DECIMAL:
                df[f.name] = pd.to_numeric(col, errors="raise").astype("float64")
            elif f.kind == DATE:
                df[f.name] = pd.to_datetime(col, errors="raise", format="mixed") \
                    if is_text else pd.to_datetime(col, errors="raise")

        # chỉ giữ các cột đã khai báo, theo thứ tự khai báo
        return df[self.columns].reset_index(drop=True)


CATALOG: Dict[str, DatasetSpec] = {
    "crm_customer_info": DatasetSpec(
        name="crm_customer_info", letter="A", source="crm", key="customer_id",
        fields=(
            FieldSpec("customer_id", INT),
            FieldSpec("customer_number"),
            FieldSpec("first_name"),
            FieldSpec("last_name"),
            FieldSpec("marital_status"),
            FieldSpec("gender"),
            FieldSpec("birthdate", DATE),
            FieldSpec("create_date", DATE),
        ),
    ),
    "crm_product_data": DatasetSpec(
        name="crm_product_data", letter="B", source="crm", key="product_id",
        fields=(
            FieldSpec("product_id", INT),
            FieldSpec("product_number"),
            FieldSpec("product_name"),
            FieldSpec("cost", DECIMAL),
            FieldSpec("product_line"),
            FieldSpec("start_data", DATE),
        ),
        renames=(("start_data", "start_date"),),
    ),
    "crm_sales_order": DatasetSpec(
        name="crm_sales_order", letter="C", source="crm", key="order_number",
        fields=(
            FieldSpec("order_number"),
            FieldSpec("product_id", INT),
            FieldSpec("customer_id", INT),
            FieldSpec("store_id", INT, required=False),
            FieldSpec("order_date", DATE),
            FieldSpec("quantity", INT),
            FieldSpec("price", DECIMAL),
            FieldSpec("shipping_date", DATE),
            FieldSpec("due_date", DATE),
            FieldSpec("sales_amount", DECIMAL),
        ),
    ),
    "erp_category_map": DatasetSpec(
        name="erp_category_map", letter="E", source="erp", key="category_id",
        fields=(
            FieldSpec("category_id"),
            FieldSpec("category"),
            FieldSpec("subcategory"),
        ),
    ),
    "erp_product_specs": DatasetSpec(
        name="erp_product_specs", letter="F", source="erp", key="product_id",
        fields=(
            FieldSpec("product_id", INT),
            FieldSpec("subcategory"),
            FieldSpec("maintenance_required"),
            FieldSpec("product_line"),
        ),
        depends_on=("erp_category_map",),
    ),
    "erp_stores": DatasetSpec(
        name="erp_stores", letter="G", source="erp", key="store_id",
        fields=(
            FieldSpec("store_id", INT),
            FieldSpec("store_name"),
            FieldSpec("store_type"),
            FieldSpec("region"),
        ),
    ),
    "erp_returns": DatasetSpec(
        name="erp_returns", letter="H", source="erp", key="return_id",
        fields=(
            FieldSpec("return_id", INT),
            FieldSpec("order_number"),
            FieldSpec("return_date", DATE),
            FieldSpec("return_reason"),
            FieldSpec("return_amount", DECIMAL),
        ),
    ),
    "erp_spatial_data": DatasetSpec(
        name="erp_spatial_data", letter="I", source="erp", key="customer_id",
        fields=(
            FieldSpec("customer_id", INT),
            FieldSpec("country"),
            FieldSpec("city"),
        ),
        depends_on=("erp_territory",),
    ),
    "erp_territory": DatasetSpec(
        name="erp_territory", letter="J", source="erp", key="city",
        fields=(
            FieldSpec("city"),
            FieldSpec("country"),
            FieldSpec("continent"),
        ),
    ),
}

DATASET_NAMES = list(CATALOG)


def get_dataset(name: str) -> DatasetSpec:
    try:
        return CATALOG[name]
    except KeyError:
        raise ValueError(f"Unknown dataset: {name}") from None


# Chuẩn hoá phạm vi (None = tất cả) thành danh sách theo thứ tự phụ thuộc:
# dataset tham chiếu (territory, category map) luôn đứng trước dataset dùng nó.
def resolve_scope(scope: Optional[Union[str, Iterable[str]]] = None) -> List[str]:
    if scope is None:
        names = list(DATASET_NAMES)
    elif isinstance(scope, str):
        names = [scope]
    else:
        names = list(dict.fromkeys(scope))

    for name in names:
        get_dataset(name)

    ordered: List[str] = []

    def visit(name: str):
        if name in ordered:
            return
        for dep in CATALOG[name].depends_on:
            if dep in names:
                visit(dep)
        ordered.append(name)

    for name in DATASET_NAMES:
        if name in names:
            visit(name)
    return ordered
