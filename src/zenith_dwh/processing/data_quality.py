# kiểm tra chất lượng dữ liệu cho 9 dataset (raw hoặc clean)
# Mỗi check có id dạng <ký tự dataset><nhóm><chữ> (vd A1a), check liên nguồn dùng K<n>.
# Nhóm check:
# completeness (null / rỗng sau trim)
# uniqueness (trùng business key)
# validity (giá trị ngoài tập cho phép, sai pattern, khoảng trắng thừa)
# consistency (đối chiếu giữa các cột / giữa các bảng)
# referential integrity (khoá ngoại mồ côi - left anti join)
# timeliness (ngày trong tương lai / trước mốc cố định)
# Check chỉ đọc dữ liệu, không sửa; phát hiện lỗi không làm dừng pipeline.

import re
import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, date
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..utils.logging_config import get_logger, PipelineLogger
from .datasets import CATALOG, DATASET_NAMES

logger = get_logger(__name__)

COMPLETENESS = "completeness"
UNIQUENESS = "uniqueness"
VALIDITY = "validity"
CONSISTENCY = "consistency"
REFERENTIAL = "referential_integrity"
TIMELINESS = "timeliness"

COUNT = "count"
GROUPS = "groups"
ROWS = "rows"

CROSS_SOURCE = "cross_source"

MARITAL_STATUSES = ("Single", "Married", "Divorced")
GENDERS = ("Male", "Female")
PRODUCT_LINES = ("Standard", "Road", "Mountain", "Touring")
BIKE_LINES = ("Road", "Mountain", "Touring")
MAINTENANCE_VALUES = ("Yes", "No")
STORE_TYPES = ("Flagship", "Retail", "Online", "Outlet")
REGIONS = ("Asia-Pacific", "Latin America", "Europe", "North America")
RETURN_REASONS = ("Wrong Item", "Size Mismatch", "Unsatisfied", "Defective")
CATEGORY_PREFIXES = {"AC": "Accessories", "BI": "Bikes", "CL": "Clothing", "CO": "Components"}

DEFAULT_BOUNDARIES = {
    "birthdate_min": "1920-01-01",
    "birthdate_max": "2010-01-01",
    "product_start_min": "2000-01-01",
    "order_date_min": "2020-01-01",
    "return_date_min": "2020-01-01",
}


@dataclass
class CheckResult:
    check_id: str
    dataset: str
    category: str
    description: str
    kind: str
    metric: Any = None
    samples: List[Dict[str, Any]] = field(default_factory=list)
    probe: bool = False
    error: Optional[str] = None

    @property
    def issue_count(self) -> int:
        # count: giá trị metric; groups/rows: số nhóm / số dòng được liệt kê; probe không tính
        if self.error is not None or self.probe or self.metric is None:
            return 0
        if self.kind == COUNT:
            return int(self.metric)
        return len(self.metric)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["issue_count"] = self.issue_count
        return result


@dataclass(frozen=True)
class CheckContext:
    as_of: pd.Timestamp
    boundaries: Dict[str, pd.Timestamp]
    sample_size: int
    cost_outlier_threshold: float


Evaluator = Callable[[CheckContext, Dict[str, pd.DataFrame]], Tuple[Any, Optional[pd.DataFrame]]]


@dataclass(frozen=True)
class QualityCheck:
    check_id: str
    dataset: str
    category: str
    description: str
    kind: str
    inputs: Tuple[str, ...]
    evaluate: Evaluator
    probe: bool = False


@dataclass
class QualityReport:
    timestamp: str
    layer: str
    as_of: str
    row_counts: Dict[str, Optional[int]]
    results: List[CheckResult]
    unavailable: Dict[str, str] = field(default_factory=dict)

    def get(self, check_id: str) -> CheckResult:
        for result in self.results:
            if result.check_id == check_id:
                return result
        raise KeyError(check_id)

    def failed_checks(self) -> List[CheckResult]:
        # check không chạy được (input thiếu hoặc lỗi khi đánh giá)
        return [r for r in self.results if r.error is not None]

    def findings(self) -> List[CheckResult]:
        return [r for r in self.results if r.issue_count > 0]

    def issues_by_category(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for result in self.results:
            totals[result.category] = totals.get(result.category, 0) + result.issue_count
        return totals

    def summary(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "layer": self.layer,
            "total_checks": len(self.results),
            "checks_with_findings": len(self.findings()),
            "checks_failed_to_run": len(self.failed_checks()),
            "probes": sum(1 for r in self.results if r.probe),
            "issues_by_category": self.issues_by_category(),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "layer": self.layer,
            "as_of": self.as_of,
            "row_counts": self.row_counts,
            "unavailable": self.unavailable,
            "summary": self.summary(),
            "results": [r.to_dict() for r in self.results],
        }


# ---------------------------------------------------------------------------
# helpers: giữ đúng ngữ nghĩa SQL (null không khớp pattern / bất đẳng thức)
# ---------------------------------------------------------------------------

def _mask(condition: pd.Series) -> pd.Series:
    return condition.fillna(False).astype(bool)


def _trimmed(values: pd.Series) -> pd.Series:
    # trim giữ '' cho chuỗi toàn khoảng trắng, null giữ null
    return values.map(lambda v: v.strip() if isinstance(v, str) else None).astype(object)


def _is_blank(values: pd.Series) -> pd.Series:
    trimmed = _trimmed(values)
    return values.isna() | (trimmed == "")


def _is_padded(values: pd.Series) -> pd.Series:
    return values.map(lambda v: isinstance(v, str) and v != v.strip()).astype(bool)


def _not_matching(values: pd.Series, pattern: str) -> pd.Series:
    regex = re.compile(pattern)
    return values.map(lambda v: isinstance(v, str) and regex.fullmatch(v) is None).astype(bool)


def _plain(value: Any) -> Any:
    # đổi giá trị numpy/pandas sang kiểu Python thuần để serialize JSON
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return tuple(_plain(v) for v in value)
    if isinstance(value, (pd.Timestamp, datetime, date)):
        if pd.isna(value):
            return None
        return pd.Timestamp(value).strftime("%Y-%m-%d")
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    return value


def _records(df: pd.DataFrame, columns: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
    if columns is not None:
        df = df[list(columns)]
    return [{k: _plain(v) for k, v in row.items()} for row in df.to_dict("records")]


def _group_counts(df: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    if df.empty:
        return pd.DataFrame(columns=list(columns) + ["count"])
    counts = df.groupby(list(columns), dropna=False, sort=False).size().reset_index(name="count")
    return counts


def _as_groups(counts: pd.DataFrame, columns: Sequence[str]) -> List[Tuple[Any, int]]:
    groups = []
    for record in counts.to_dict("records"):
        values = tuple(_plain(record[c]) for c in columns)
        key = values[0] if len(values) == 1 else values
        groups.append((key, int(record["count"])))
    return sorted(groups, key=lambda g: (g[0] is None, str(g[0])))


def _date(values: pd.Series) -> pd.Series:
    return pd.to_datetime(values, errors="coerce")


def _number(values: pd.Series) -> pd.Series:
    return pd.to_numeric(values, errors="coerce").astype("float64")


def _orphans(keys: pd.Series, reference: pd.Series) -> pd.Series:
    # left anti join: khoá null cũng là mồ côi (không join được)
    known = reference.dropna().unique()
    return ~_mask(keys.isin(known)) | keys.isna()


# ---------------------------------------------------------------------------
# factory tạo check theo từng kiểu
# ---------------------------------------------------------------------------

def missing_values(check_id, dataset, column, description, blank_is_missing=True) -> QualityCheck:
    def evaluate(ctx, frames):
        values = frames[dataset][column]
        missing = _is_blank(values) if blank_is_missing else values.isna()
        return int(missing.sum()), None
    return QualityCheck(check_id, dataset, COMPLETENESS, description, COUNT, (dataset,), evaluate)


def missing_with_detail(check_id, dataset, column, description, detail_columns) -> QualityCheck:
    def evaluate(ctx, frames):
        df = frames[dataset]
        missing = df[df[column].isna()]
        return len(missing), missing[list(detail_columns)]
    return QualityCheck(check_id, dataset, COMPLETENESS, description, COUNT, (dataset,), evaluate)


def duplicate_keys(check_id, dataset, columns, description) -> QualityCheck:
    columns = tuple([columns] if isinstance(columns, str) else columns)

    def evaluate(ctx, frames):
        counts = _group_counts(frames[dataset], columns)
        return _as_groups(counts[counts["count"] > 1], columns), None
    return QualityCheck(check_id, dataset, UNIQUENESS, description, GROUPS, (dataset,), evaluate)


def distinct_values(check_id, dataset, columns, description, trim=True) -> QualityCheck:
    # probe: liệt kê toàn bộ giá trị (kể cả null) và số lần xuất hiện
    columns = tuple([columns] if isinstance(columns, str) else columns)

    def evaluate(ctx, frames):
        df = frames[dataset][list(columns)]
        if trim:
            df = df.apply(_trimmed)
        return _as_groups(_group_counts(df, columns), columns), None
    return QualityCheck(check_id, dataset, VALIDITY, description, GROUPS, (dataset,), evaluate, probe=True)


def invalid_values(check_id, dataset, column, allowed, description) -> QualityCheck:
    allowed = tuple(allowed)

    def evaluate(ctx, frames):
        df = frames[dataset]
        trimmed = _trimmed(df[column])
        invalid = ~_is_blank(df[column]) & ~trimmed.isin(allowed)
        return _as_groups(_group_counts(df[invalid], [column]), [column]), None
    return QualityCheck(check_id, dataset, VALIDITY, description, GROUPS, (dataset,), evaluate)


def padded_text(check_id, dataset, columns, description) -> QualityCheck:
    columns = tuple([columns] if isinstance(columns, str) else columns)

    def evaluate(ctx, frames):
        df = frames[dataset]
        padded = np.zeros(len(df), dtype=bool)
        for column in columns:
            padded |= _is_padded(df[column]).to_numpy()
        return int(padded.sum()), None
    return QualityCheck(check_id, dataset, VALIDITY, description, COUNT, (dataset,), evaluate)


def pattern_violations(check_id, dataset, column, pattern, description, grouped=False) -> QualityCheck:
    def evaluate(ctx, frames):
        df = frames[dataset]
        offending = df[_not_matching(df[column], pattern)]
        if grouped:
            return _as_groups(_group_counts(offending, [column]), [column]), None
        return _records(offending, [column]), None
    kind = GROUPS if grouped else ROWS
    return QualityCheck(check_id, dataset, VALIDITY, description, kind, (dataset,), evaluate)


def count_where(check_id, dataset, category, description, predicate, inputs=None,
                detail_columns=None) -> QualityCheck:
    # predicate(ctx, frames) -> mask trên frames[dataset]
    def evaluate(ctx, frames):
        df = frames[dataset]
        hits = _mask(predicate(ctx, frames))
        if detail_columns:
            return int(hits.sum()), df[hits.to_numpy()].loc[:, list(detail_columns)]
        return int(hits.sum()), None
    return QualityCheck(check_id, dataset, category, description, COUNT, tuple(inputs or (dataset,)), evaluate)


def rows_where(check_id, dataset, category, description, predicate, columns, inputs=None) -> QualityCheck:
    def evaluate(ctx, frames):
        df = frames[dataset]
        hits = _mask(predicate(ctx, frames))
        return _records(df[hits.to_numpy()], columns), None
    return QualityCheck(check_id, dataset, category, description, ROWS, tuple(inputs or (dataset,)), evaluate)


def orphan_keys(check_id, dataset, key, reference, reference_key, description,
                trim=False, scope=None, category=REFERENTIAL, skip_null=False) -> QualityCheck:
    def evaluate(ctx, frames):
        keys = frames[dataset][key]
        ref = frames[reference][reference_key]
        if trim:
            keys, ref = _trimmed(keys), _trimmed(ref)
        orphans = _orphans(keys, ref)
        if skip_null:
            orphans &= keys.notna()
        return int(orphans.sum()), None
    return QualityCheck(check_id, scope or dataset, category, description, COUNT,
                        (dataset, reference), evaluate)


def date_range(check_id, dataset, bounds, description) -> QualityCheck:
    # bounds: {tên cột kết quả: (cột ngày, "min" | "max")}
    def evaluate(ctx, frames):
        df = frames[dataset]
        profile = {}
        for label, (column, how) in bounds.items():
            values = _date(df[column])
            profile[label] = _plain(values.min() if how == "min" else values.max())
        return [profile], None
    return QualityCheck(check_id, dataset, TIMELINESS, description, ROWS, (dataset,), evaluate, probe=True)


def row_counts(check_id, datasets, description) -> QualityCheck:
    def evaluate(ctx, frames):
        return [{f"{name}_rows": len(frames[name]) for name in datasets}], None
    return QualityCheck(check_id, CROSS_SOURCE, COMPLETENESS, description, ROWS, tuple(datasets), evaluate,
                        probe=True)


# ---------------------------------------------------------------------------
# catalog
# ---------------------------------------------------------------------------

def _col(dataset, column):
    return lambda ctx, frames: frames[dataset][column]


def _customer_checks() -> List[QualityCheck]:
    ds = "crm_customer_info"

    def suffix_mismatch(ctx, frames):
        df = frames[ds]
        suffix = df["customer_number"].map(
            lambda v: v.replace("CUST", "") if isinstance(v, str) else None
        )
        parsed = suffix.map(
            lambda v: int(v.strip()) if isinstance(v, str) and re.fullmatch(r"\s*[+-]?\d+\s*", v) else None
        )
        parsed = pd.to_numeric(parsed, errors="coerce")
        ids = _number(df["customer_id"])
        return parsed.notna() & ids.notna() & (parsed != ids)

    def not_proper_case(ctx, frames):
        values = frames[ds]["first_name"]

        def offending(v):
            if not isinstance(v, str) or not v.strip():
                return False
            text = v.strip()
            return text != text[:1].upper() + text[1:].lower()
        return values.map(offending).astype(bool)

    def improper_names(ctx, frames):
        df = frames[ds]
        hits = not_proper_case(ctx, frames)
        return _as_groups(_group_counts(df[hits], ["first_name"]), ["first_name"]), None

    birth = _col(ds, "birthdate")
    created = _col(ds, "create_date")

    return [
        missing_values("A1a", ds, "customer_id", "NULL customer_id", blank_is_missing=False),
        missing_values("A1b", ds, "customer_number", "NULL/empty customer_number"),
        missing_values("A1c", ds, "first_name", "NULL/empty/blank first_name"),
        missing_values("A1d", ds, "last_name", "NULL/empty last_name"),
        missing_values("A1e", ds, "marital_status", "NULL/empty marital_status"),
        missing_values("A1f", ds, "gender", "NULL/empty gender"),
        missing_values("A1g", ds, "birthdate", "NULL birthdate", blank_is_missing=False),
        missing_values("A1h", ds, "create_date", "NULL create_date", blank_is_missing=False),
        duplicate_keys("A2a", ds, "customer_id", "Duplicate customer_id"),
        duplicate_keys("A2b", ds, "customer_number", "Duplicate customer_number"),
        padded_text("A3a", ds, "first_name", "first_name with leading/trailing spaces"),
        padded_text("A3b", ds, "last_name", "last_name with leading/trailing spaces"),
        padded_text("A3c", ds, "gender", "gender with leading/trailing spaces"),
        QualityCheck("A3d", ds, VALIDITY, "first_name not in proper case", GROUPS, (ds,), improper_names),
        distinct_values("A3e", ds, "marital_status", "Distinct marital_status values"),
        invalid_values("A3f", ds, "marital_status", MARITAL_STATUSES, "Invalid marital_status codes"),
        distinct_values("A3g", ds, "gender", "Distinct gender values"),
        invalid_values("A3h", ds, "gender", GENDERS, "Invalid gender values"),
        pattern_violations("A3i", ds, "customer_number", r"CUST\d{5}",
                           "customer_number not matching CUST##### pattern", grouped=True),
        count_where("A4a", ds, TIMELINESS, "birthdate in the future",
                    lambda ctx, f: _date(birth(ctx, f)) > ctx.as_of),
        count_where("A4b", ds, TIMELINESS, "birthdate before 1920",
                    lambda ctx, f: _date(birth(ctx, f)) < ctx.boundaries["birthdate_min"]),
        rows_where("A4c", ds, TIMELINESS, "birthdate after 2010 (very young)",
                   lambda ctx, f: _date(birth(ctx, f)) > ctx.boundaries["birthdate_max"],
                   ["customer_id", "birthdate"]),
        count_where("A4d", ds, TIMELINESS, "create_date in the future",
                    lambda ctx, f: _date(created(ctx, f)) > ctx.as_of),
        count_where("A4e", ds, CONSISTENCY, "create_date before birthdate",
                    lambda ctx, f: _date(created(ctx, f)) < _date(birth(ctx, f))),
        rows_where("A5a", ds, CONSISTENCY, "customer_id does not match customer_number suffix",
                   suffix_mismatch, ["customer_id", "customer_number"]),
    ]


def _product_checks() -> List[QualityCheck]:
    ds = "crm_product_data"
    cost = lambda ctx, f: _number(f[ds]["cost"])
    start = lambda ctx, f: _date(f[ds]["start_data"])

    def bike_prefix(frames) -> pd.Series:
        return frames[ds]["product_number"].map(lambda v: v.startswith("BK-") if isinstance(v, str) else None)

    def bk_standard(ctx, frames):
        prefixed = bike_prefix(frames)
        return (prefixed == True) & (_trimmed(frames[ds]["product_line"]) == "Standard")  # noqa: E712

    def non_bk_bike_line(ctx, frames):
        prefixed = bike_prefix(frames)
        return (prefixed == False) & _trimmed(frames[ds]["product_line"]).isin(BIKE_LINES)  # noqa: E712

    detail = ["product_id", "product_number", "product_name", "product_line"]

    return [
        missing_values("B1a", ds, "product_id", "NULL product_id", blank_is_missing=False),
        missing_values("B1b", ds, "product_number", "NULL/empty product_number"),
        missing_values("B1c", ds, "product_name", "NULL/empty product_name"),
        missing_with_detail("B1d", ds, "cost", "NULL cost",
                            ["product_id", "product_number", "product_name"]),
        missing_values("B1e", ds, "product_line", "NULL/empty product_line"),
        missing_values("B1f", ds, "start_data", "NULL start_data", blank_is_missing=False),
        duplicate_keys("B2a", ds, "product_id", "Duplicate product_id"),
        duplicate_keys("B2b", ds, "product_number", "Duplicate product_number"),
        count_where("B3a", ds, VALIDITY, "Negative or zero cost", lambda ctx, f: cost(ctx, f) <= 0),
        rows_where("B3b", ds, VALIDITY, "Cost exceeds outlier threshold",
                   lambda ctx, f: cost(ctx, f) > ctx.cost_outlier_threshold,
                   ["product_id", "product_name", "cost"]),
        distinct_values("B3c", ds, "product_line", "Distinct product_line values"),
        invalid_values("B3d", ds, "product_line", PRODUCT_LINES, "Invalid product_line"),
        padded_text("B3e", ds, "product_name", "product_name with leading/trailing spaces"),
        padded_text("B3f", ds, "product_line", "product_line with leading/trailing spaces"),
        pattern_violations("B3g", ds, "product_number", r"[A-Z]{2}-[A-Z]{2}-\d{3}",
                           "product_number not matching XX-XX-### pattern"),
        count_where("B4a", ds, TIMELINESS, "start_data in the future",
                    lambda ctx, f: start(ctx, f) > ctx.as_of),
        count_where("B4b", ds, TIMELINESS, "start_data before 2000",
                    lambda ctx, f: start(ctx, f) < ctx.boundaries["product_start_min"]),
        rows_where("B5a", ds, CONSISTENCY, "BK-prefix products with Standard product_line",
                   bk_standard, detail),
        rows_where("B5b", ds, CONSISTENCY, "Non-bike prefix in bike product_line",
                   non_bk_bike_line, detail),
    ]


def _sales_checks() -> List[QualityCheck]:
    ds = "crm_sales_order"
    num = lambda column: (lambda ctx, f: _number(f[ds][column]))
    day = lambda column: (lambda ctx, f: _date(f[ds][column]))

    def amount_mismatch(frames) -> pd.Series:
        df = frames[ds]
        expected = _number(df["quantity"]) * _number(df["price"])
        difference = _number(df["sales_amount"]) - expected
        return _mask(difference.abs() > 1e-6)

    def mismatches(ctx, frames):
        df = frames[ds]
        hits = amount_mismatch(frames)
        detail = df[hits.to_numpy()].copy()
        detail["expected_sales_amount"] = _number(detail["quantity"]) * _number(detail["price"])
        detail["difference"] = _number(detail["sales_amount"]) - detail["expected_sales_amount"]
        columns = ["order_number", "quantity", "price", "sales_amount", "expected_sales_amount", "difference"]
        return int(hits.sum()), detail[columns]

    return [
        missing_values("C1a", ds, "order_number", "NULL/empty order_number"),
        missing_values("C1b", ds, "product_id", "NULL product_id", blank_is_missing=False),
        missing_values("C1c", ds, "customer_id", "NULL customer_id", blank_is_missing=False),
        missing_values("C1d", ds, "order_date", "NULL order_date", blank_is_missing=False),
        missing_values("C1e", ds, "quantity", "NULL quantity", blank_is_missing=False),
        missing_values("C1f", ds, "price", "NULL price", blank_is_missing=False),
        missing_values("C1g", ds, "shipping_date", "NULL shipping_date", blank_is_missing=False),
        missing_values("C1h", ds, "due_date", "NULL due_date", blank_is_missing=False),
        missing_values("C1i", ds, "sales_amount", "NULL sales_amount", blank_is_missing=False),
        duplicate_keys("C2a", ds, "order_number", "Duplicate order_number"),
        count_where("C3a", ds, VALIDITY, "Quantity <= 0", lambda ctx, f: num("quantity")(ctx, f) <= 0),
        count_where("C3b", ds, VALIDITY, "Price <= 0", lambda ctx, f: num("price")(ctx, f) <= 0),
        count_where("C3c", ds, VALIDITY, "Negative sales_amount", lambda ctx, f: num("sales_amount")(ctx, f) < 0),
        pattern_violations("C3d", ds, "order_number", r"SO\d{5}", "order_number not matching SO##### pattern"),
        QualityCheck("C4a", ds, CONSISTENCY, "sales_amount != quantity * price", COUNT, (ds,), mismatches),
        count_where("C5a", ds, TIMELINESS, "order_date in the future",
                    lambda ctx, f: day("order_date")(ctx, f) > ctx.as_of),
        count_where("C5b", ds, CONSISTENCY, "shipping_date < order_date",
                    lambda ctx, f: day("shipping_date")(ctx, f) < day("order_date")(ctx, f)),
        count_where("C5c", ds, CONSISTENCY, "due_date < order_date",
                    lambda ctx, f: day("due_date")(ctx, f) < day("order_date")(ctx, f)),
        count_where("C5d", ds, CONSISTENCY, "shipping_date > due_date (late shipment)",
                    lambda ctx, f: day("shipping_date")(ctx, f) > day("due_date")(ctx, f)),
        count_where("C5e", ds, TIMELINESS, "order_date before 2020",
                    lambda ctx, f: day("order_date")(ctx, f) < ctx.boundaries["order_date_min"]),
        date_range("C5f", ds, {
            "earliest_order": ("order_date", "min"),
            "latest_order": ("order_date", "max"),
            "earliest_ship": ("shipping_date", "min"),
            "latest_ship": ("shipping_date", "max"),
        }, "Order date range"),
        orphan_keys("C6a", ds, "product_id", "crm_product_data", "product_id",
                    "Orphan product_id (not in crm_product_data)"),
        orphan_keys("C6b", ds, "customer_id", "crm_customer_info", "customer_id",
                    "Orphan customer_id (not in crm_customer_info)"),
        orphan_keys("C6c", ds, "store_id", "erp_stores", "store_id",
                    "Orphan store_id (not in erp_stores)", skip_null=True),
    ]


def _category_map_checks() -> List[QualityCheck]:
    ds = "erp_category_map"

    def prefix_mismatch(ctx, frames):
        df = frames[ds]
        prefix = df["category_id"].map(lambda v: v[:2] if isinstance(v, str) else None)
        expected = prefix.map(CATEGORY_PREFIXES)
        category = _trimmed(df["category"])
        return expected.notna() & (category != expected)

    return [
        missing_values("E1a", ds, "category_id", "NULL/empty category_id"),
        missing_values("E1b", ds, "category", "NULL/empty category"),
        missing_values("E1c", ds, "subcategory", "NULL/empty subcategory"),
        duplicate_keys("E2a", ds, "category_id", "Duplicate category_id"),
        duplicate_keys("E2b", ds, ("category", "subcategory"), "Duplicate category+subcategory"),
        distinct_values("E3a", ds, "category", "Distinct category values"),
        distinct_values("E3b", ds, "subcategory", "Distinct subcategory values"),
        padded_text("E3c", ds, ("category", "subcategory", "category_id"), "Whitespace issues in category_map"),
        pattern_violations("E3d", ds, "category_id", r"[A-Z]{2}_[A-Z]{2}",
                           "category_id not matching XX_XX pattern"),
        rows_where("E3e", ds, CONSISTENCY, "category_id prefix does not match category",
                   prefix_mismatch, ["category_id", "category"]),
    ]


def _product_specs_checks() -> List[QualityCheck]:
    ds = "erp_product_specs"

    def unknown_subcategories(ctx, frames):
        specs = frames[ds]
        known = _trimmed(frames["erp_category_map"]["subcategory"]).dropna().unique()
        offending = specs[~_mask(_trimmed(specs["subcategory"]).isin(known))]
        return _as_groups(_group_counts(offending, ["subcategory"]), ["subcategory"]), None

    def line_mismatches(ctx, frames):
        specs = frames[ds][["product_id", "product_line"]]
        products = frames["crm_product_data"][["product_id", "product_line"]]
        joined = specs.merge(products, on="product_id", how="inner", suffixes=("_specs", "_crm"))
        specs_line = _trimmed(joined["product_line_specs"])
        crm_line = _trimmed(joined["product_line_crm"])
        hits = _mask(specs_line.notna() & crm_line.notna() & (specs_line != crm_line))
        joined = joined[hits.to_numpy()].rename(columns={
            "product_line_specs": "specs_product_line",
            "product_line_crm": "crm_product_line",
        })
        return _records(joined, ["product_id", "specs_product_line", "crm_product_line"]), None

    return [
        missing_values("F1a", ds, "product_id", "NULL product_id", blank_is_missing=False),
        missing_values("F1b", ds, "subcategory", "NULL/empty subcategory"),
        missing_values("F1c", ds, "maintenance_required", "NULL/empty maintenance_required"),
        missing_values("F1d", ds, "product_line", "NULL/empty product_line"),
        duplicate_keys("F2a", ds, "product_id", "Duplicate product_id"),
        distinct_values("F3a", ds, "subcategory", "Distinct subcategory values"),
        distinct_values("F3b", ds, "maintenance_required", "Distinct maintenance_required values"),
        invalid_values("F3c", ds, "maintenance_required", MAINTENANCE_VALUES,
                       "Invalid maintenance_required values"),
        distinct_values("F3d", ds, "product_line", "Distinct product_line values"),
        invalid_values("F3e", ds, "product_line", PRODUCT_LINES, "Invalid product_line"),
        padded_text("F3f", ds, ("subcategory", "maintenance_required", "product_line"),
                    "Whitespace issues in product_specs"),
        QualityCheck("F4a", ds, CONSISTENCY, "Subcategory not found in category_map (exact match)",
                     GROUPS, (ds, "erp_category_map"), unknown_subcategories),
        orphan_keys("F5a", ds, "product_id", "crm_product_data", "product_id",
                    "Orphan product_id (not in crm_product_data)"),
        QualityCheck("F5b", ds, CONSISTENCY, "product_line mismatch between product_specs and product_data",
                     ROWS, (ds, "crm_product_data"), line_mismatches),
    ]


def _store_checks() -> List[QualityCheck]:
    ds = "erp_stores"
    return [
        missing_values("G1a", ds, "store_id", "NULL store_id", blank_is_missing=False),
        missing_values("G1b", ds, "store_name", "NULL/empty store_name"),
        missing_values("G1c", ds, "store_type", "NULL/empty store_type"),
        missing_values("G1d", ds, "region", "NULL/empty region"),
        duplicate_keys("G2a", ds, "store_id", "Duplicate store_id"),
        duplicate_keys("G2b", ds, "store_name", "Duplicate store_name"),
        distinct_values("G3a", ds, "store_type", "Distinct store_type values"),
        invalid_values("G3b", ds, "store_type", STORE_TYPES, "Invalid store_type"),
        distinct_values("G3c", ds, "region", "Distinct region values"),
        invalid_values("G3d", ds, "region", REGIONS, "Invalid region"),
        padded_text("G3e", ds, ("store_name", "store_type", "region"), "Whitespace issues in erp_stores"),
        count_where("G3f", ds, VALIDITY, "store_id <= 0", lambda ctx, f: _number(f[ds]["store_id"]) <= 0),
    ]


def _returns_checks() -> List[QualityCheck]:
    ds = "erp_returns"
    amount = lambda ctx, f: _number(f[ds]["return_amount"])
    returned = lambda ctx, f: _date(f[ds]["return_date"])

    def joined_with_sales(frames) -> pd.DataFrame:
        returns = frames[ds].assign(_order_key=_trimmed(frames[ds]["order_number"]))
        sales = frames["crm_sales_order"][["order_number", "order_date", "sales_amount"]]
        sales = sales.assign(_order_key=_trimmed(sales["order_number"])).drop(columns=["order_number"])
        joined = returns.merge(sales.dropna(subset=["_order_key"]), on="_order_key", how="inner")
        return joined

    def over_refunds(ctx, frames):
        joined = joined_with_sales(frames)
        hits = _mask(_number(joined["return_amount"]) > _number(joined["sales_amount"]))
        return _records(joined[hits.to_numpy()], ["return_id", "order_number", "return_amount", "sales_amount"]), None

    def early_returns(ctx, frames):
        joined = joined_with_sales(frames)
        hits = _mask(_date(joined["return_date"]) < _date(joined["order_date"]))
        return _records(joined[hits.to_numpy()], ["return_id", "order_number", "return_date", "order_date"]), None

    both = (ds, "crm_sales_order")
    return [
        missing_values("H1a", ds, "return_id", "NULL return_id", blank_is_missing=False),
        missing_values("H1b", ds, "order_number", "NULL/empty order_number"),
        missing_values("H1c", ds, "return_date", "NULL return_date", blank_is_missing=False),
        missing_values("H1d", ds, "return_reason", "NULL/empty return_reason"),
        missing_values("H1e", ds, "return_amount", "NULL return_amount", blank_is_missing=False),
        duplicate_keys("H2a", ds, "return_id", "Duplicate return_id"),
        duplicate_keys("H2b", ds, "order_number", "Multiple returns per order_number"),
        count_where("H3a", ds, VALIDITY, "Negative return_amount", lambda ctx, f: amount(ctx, f) < 0,
                    detail_columns=["return_id", "order_number", "return_amount"]),
        count_where("H3b", ds, VALIDITY, "Zero return_amount", lambda ctx, f: amount(ctx, f) == 0),
        distinct_values("H3c", ds, "return_reason", "Distinct return_reason values"),
        invalid_values("H3d", ds, "return_reason", RETURN_REASONS, "Invalid return_reason"),
        pattern_violations("H3e", ds, "order_number", r"SO\d{5}", "order_number not matching SO##### pattern"),
        padded_text("H3f", ds, ("order_number", "return_reason"), "Whitespace issues in erp_returns"),
        count_where("H4a", ds, TIMELINESS, "return_date in the future",
                    lambda ctx, f: returned(ctx, f) > ctx.as_of),
        count_where("H4b", ds, TIMELINESS, "return_date before 2020",
                    lambda ctx, f: returned(ctx, f) < ctx.boundaries["return_date_min"]),
        date_range("H4c", ds, {
            "earliest_return": ("return_date", "min"),
            "latest_return": ("return_date", "max"),
        }, "Return date range"),
        orphan_keys("H5a", ds, "order_number", "crm_sales_order", "order_number",
                    "Orphan order_number (not in crm_sales_order)", trim=True),
        QualityCheck("H6a", ds, CONSISTENCY, "return_amount > original sales_amount", ROWS, both, over_refunds),
        QualityCheck("H6b", ds, CONSISTENCY, "return_date before order_date", ROWS, both, early_returns),
    ]


def _spatial_checks() -> List[QualityCheck]:
    ds = "erp_spatial_data"

    def country_mismatches(ctx, frames):
        spatial = frames[ds].assign(_city_key=_trimmed(frames[ds]["city"]))
        territory = frames["erp_territory"][["city", "country"]]
        territory = territory.assign(_city_key=_trimmed(territory["city"])).rename(
            columns={"country": "territory_country"}
        ).drop(columns=["city"])
        joined = spatial.merge(territory.dropna(subset=["_city_key"]), on="_city_key", how="inner")
        left, right = _trimmed(joined["country"]), _trimmed(joined["territory_country"])
        hits = _mask(left.notna() & right.notna() & (left != right))
        joined = joined[hits.to_numpy()].rename(columns={"country": "spatial_country", "city": "spatial_city"})
        return _records(joined, ["customer_id", "spatial_country", "spatial_city", "territory_country"]), None

    def not_in_territory(column):
        def evaluate(ctx, frames):
            spatial = frames[ds]
            known = _trimmed(frames["erp_territory"][column]).dropna().unique()
            offending = spatial[~_mask(_trimmed(spatial[column]).isin(known))]
            return _as_groups(_group_counts(offending, [column]), [column]), None
        return evaluate

    def customers_without_spatial(ctx, frames):
        customers = frames["crm_customer_info"]["customer_id"]
        return int(_orphans(customers, frames[ds]["customer_id"]).sum()), None

    with_territory = (ds, "erp_territory")
    return [
        missing_values("I1a", ds, "customer_id", "NULL customer_id", blank_is_missing=False),
        missing_values("I1b", ds, "country", "NULL/empty country"),
        missing_values("I1c", ds, "city", "NULL/empty city"),
        duplicate_keys("I2a", ds, "customer_id", "Duplicate customer_id"),
        distinct_values("I3a", ds, "country", "Distinct country values"),
        distinct_values("I3b", ds, "city", "Distinct city values"),
        padded_text("I3c", ds, ("country", "city"), "Whitespace issues in erp_spatial_data"),
        QualityCheck("I4a", ds, CONSISTENCY, "City-Country mismatch vs territory reference", ROWS,
                     with_territory, country_mismatches),
        QualityCheck("I4b", ds, REFERENTIAL, "City not found in territory reference", GROUPS,
                     with_territory, not_in_territory("city")),
        QualityCheck("I4c", ds, REFERENTIAL, "Country not found in territory reference", GROUPS,
                     with_territory, not_in_territory("country")),
        orphan_keys("I5a", ds, "customer_id", "crm_customer_info", "customer_id",
                    "Orphan customer_id (not in crm_customer_info)"),
        QualityCheck("I5b", ds, COMPLETENESS, "Customers missing spatial data", COUNT,
                     (ds, "crm_customer_info"), customers_without_spatial),
    ]


def _territory_checks() -> List[QualityCheck]:
    ds = "erp_territory"

    def multi_continent(ctx, frames):
        df = frames[ds]
        counts = df.groupby("country", dropna=False)["continent"].nunique().reset_index(name="count")
        return _as_groups(counts[counts["count"] > 1], ["country"]), None

    return [
        missing_values("J1a", ds, "city", "NULL/empty city"),
        missing_values("J1b", ds, "country", "NULL/empty country"),
        missing_values("J1c", ds, "continent", "NULL/empty continent"),
        duplicate_keys("J2a", ds, "city", "Duplicate city"),
        duplicate_keys("J2b", ds, ("city", "country"), "Duplicate city+country"),
        distinct_values("J3a", ds, "continent", "Distinct continent values"),
        distinct_values("J3b", ds, "country", "Distinct country values"),
        padded_text("J3c", ds, ("city", "country", "continent"), "Whitespace issues in erp_territory"),
        distinct_values("J4a", ds, ("country", "continent"), "Possible country-continent mismatch", trim=False),
        QualityCheck("J4b", ds, CONSISTENCY, "Country mapped to multiple continents", GROUPS, (ds,),
                     multi_continent),
    ]


def _cross_source_checks() -> List[QualityCheck]:
    def regions_without_continent(ctx, frames):
        stores = frames["erp_stores"]
        continents = _trimmed(frames["erp_territory"]["continent"]).dropna().unique()
        offending = stores[~_mask(_trimmed(stores["region"]).isin(continents))]
        return _as_groups(_group_counts(offending, ["region"]), ["region"]), None

    crm = [n for n in DATASET_NAMES if CATALOG[n].source == "crm"]
    erp = [n for n in DATASET_NAMES if CATALOG[n].source == "erp"]

    return [
        row_counts("D1", crm, "Row counts (CRM)"),
        orphan_keys("K1", "crm_product_data", "product_id", "erp_product_specs", "product_id",
                    "Products in CRM without ERP specs", scope=CROSS_SOURCE),
        orphan_keys("K2", "erp_product_specs", "product_id", "crm_product_data", "product_id",
                    "Products in ERP specs without CRM product", scope=CROSS_SOURCE),
        orphan_keys("K3", "crm_sales_order", "product_id", "erp_product_specs", "product_id",
                    "Sales orders with products missing ERP specs", scope=CROSS_SOURCE),
        orphan_keys("K4", "erp_returns", "order_number", "crm_sales_order", "order_number",
                    "Returns with orphan order_numbers", trim=True, scope=CROSS_SOURCE),
        orphan_keys("K5", "erp_spatial_data", "customer_id", "crm_customer_info", "customer_id",
                    "Spatial data customers not in CRM", scope=CROSS_SOURCE),
        QualityCheck("K6", CROSS_SOURCE, REFERENTIAL, "Store regions not in territory continents", GROUPS,
                     ("erp_stores", "erp_territory"), regions_without_continent),
        row_counts("L1", erp, "Row counts (ERP)"),
    ]


def build_catalog() -> List[QualityCheck]:
    checks = (
        _customer_checks()
        + _product_checks()
        + _sales_checks()
        + _category_map_checks()
        + _product_specs_checks()
        + _store_checks()
        + _returns_checks()
        + _spatial_checks()
        + _territory_checks()
        + _cross_source_checks()
    )
    ids = [c.check_id for c in checks]
    duplicated = {i for i in ids if ids.count(i) > 1}
    if duplicated:
        raise ValueError(f"Duplicate check ids in catalog: {sorted(duplicated)}")
    return checks


# Chạy catalog check trên một tập frame (raw hoặc clean), trả về QualityReport
class DataQualityChecker:

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        quality_config = self.config.get("quality", {}) or {}
        self.sample_size = int(quality_config.get("sample_size", 20))
        self.cost_outlier_threshold = float(quality_config.get("cost_outlier_threshold", 5000))
        boundaries = dict(DEFAULT_BOUNDARIES)
        boundaries.update(quality_config.get("boundaries", {}) or {})
        self.boundaries = {k: pd.Timestamp(str(v)) for k, v in boundaries.items()}
        self.catalog = build_catalog()
        self.pipeline_logger = PipelineLogger(__name__)

    def list_checks(self, scope: Optional[Union[str, Iterable[str]]] = None) -> List[QualityCheck]:
        scopes = self._resolve_scope(scope)
        return [c for c in self.catalog if c.dataset in scopes]

    def _resolve_scope(self, scope) -> set:
        if scope is None:
            return set(DATASET_NAMES) | {CROSS_SOURCE}
        names = {scope} if isinstance(scope, str) else set(scope)
        unknown = names - set(DATASET_NAMES) - {CROSS_SOURCE}
        if unknown:
            raise ValueError(f"Unknown quality check scope: {sorted(unknown)}")
        return names

    # Hàm chính: chạy toàn bộ check trong scope, check lỗi được ghi nhận chứ không dừng
    def check_data_quality(
        self,
        frames: Dict[str, Optional[pd.DataFrame]],
        scope: Optional[Union[str, Iterable[str]]] = None,
        as_of: Optional[datetime] = None,
        layer: str = "raw",
        unavailable: Optional[Dict[str, str]] = None,
    ) -> QualityReport:
        logger.info("Starting data quality checks", layer=layer)
        as_of = pd.Timestamp(as_of or datetime.now())
        context = CheckContext(
            as_of=as_of,
            boundaries=self.boundaries,
            sample_size=self.sample_size,
            cost_outlier_threshold=self.cost_outlier_threshold,
        )
        frames = self._align_columns(frames, layer)
        unavailable = dict(unavailable or {})

        results = [self._run_check(check, context, frames, unavailable) for check in self.list_checks(scope)]

        report = QualityReport(
            timestamp=datetime.now().isoformat(),
            layer=layer,
            as_of=as_of.isoformat(),
            row_counts={name: (len(df) if df is not None else None) for name, df in frames.items()},
            results=results,
            unavailable=unavailable,
        )
        logger.info("Data quality check completed", **report.summary())
        return report

    def _align_columns(self, frames: Dict[str, Optional[pd.DataFrame]], layer: str) -> Dict[str, Optional[pd.DataFrame]]:
        # lớp clean đã đổi tên cột (start_date); check vẫn dùng tên gốc
        if layer != "clean":
            return dict(frames)
        aligned = {}
        for name, df in frames.items():
            renames = dict(CATALOG[name].renames) if name in CATALOG else {}
            reverse = {new: old for old, new in renames.items()}
            aligned[name] = df.rename(columns=reverse) if df is not None and reverse else df
        return aligned

    def _run_check(self, check: QualityCheck, context: CheckContext,
                   frames: Dict[str, Optional[pd.DataFrame]], unavailable: Dict[str, str]) -> CheckResult:
        result = CheckResult(
            check_id=check.check_id,
            dataset=check.dataset,
            category=check.category,
            description=check.description,
            kind=check.kind,
            probe=check.probe,
        )

        missing = [name for name in check.inputs if frames.get(name) is None]
        if missing:
            reasons = [f"{name}: {unavailable.get(name, 'not loaded')}" for name in missing]
            result.error = f"input dataset unavailable ({'; '.join(reasons)})"
            return result

        try:
            metric, samples = check.evaluate(context, frames)
        except Exception as e:
            logger.error(f"Quality check {check.check_id} failed: {str(e)}")
            result.error = f"{type(e).__name__}: {e}"
            return result

        result.metric = metric
        if samples is not None:
            result.samples = _records(samples.head(context.sample_size))
        if result.issue_count > 0:
            self.pipeline_logger.log_data_quality_issue(check.check_id, check.description, result.issue_count)
        return result


def render_report(report: QualityReport) -> str:
    lines = [f"Data quality report ({report.layer}) - {report.timestamp}"]
    for result in report.results:
        if result.error:
            status = f"ERROR {result.error}"
        elif result.probe:
            status = f"probe: {result.metric}"
        else:
            status = f"issues={result.issue_count}"
        lines.append(f"  {result.check_id:<4} [{result.dataset}] {result.description}: {status}")
    return "\n".join(lines)


def main():
    import argparse

    from ..utils.config import ConfigManager
    from ..utils.logging_config import setup_logging
    from ..ingestion.csv_ingestion import CSVIngestion

    parser = argparse.ArgumentParser(description="Data Quality Checker")
    parser.add_argument("--config", default="config/config.yaml", help="Configuration file")
    parser.add_argument("--dataset", action="append", help="Dataset scope (repeatable, default: all)")
    parser.add_argument("--output", help="Write the JSON report to this path")

    args = parser.parse_args()

    config_manager = ConfigManager()
    config = config_manager.load_config(args.config)
    setup_logging(config_manager.get_monitoring_config().get("logging"))

    raw_store = CSVIngestion(config).ingest_all()
    checker = DataQualityChecker(config)
    report = checker.check_data_quality(
        raw_store.frames(), scope=args.dataset, unavailable=raw_store.unavailable_reasons()
    )

    print(render_report(report))
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2, default=str)
        print(f"Report saved to {args.output}")


if __name__ == "__main__":
    main()
