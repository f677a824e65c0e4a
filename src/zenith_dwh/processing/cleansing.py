# Cleansing / transformation engine: raw (bronze) -> clean (silver)
# Mỗi dataset chạy qua cùng một chuỗi stage có thứ tự:
#   filter -> deduplicate -> normalize -> map_codes -> validate
#   -> recompute -> cross_reference -> rename -> stamp
# Luật riêng từng dataset được khai báo trong các bảng TEXT_RULES, CODE_MAPPINGS,
# VALIDATION_RULES bên dưới; chính sách dedup và unmapped lấy từ config.
# Lỗi ở bất kỳ stage nào -> TransformationError(dataset, stage, cause), frame cũ không bị động tới.

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from ..utils.logging_config import get_logger, PipelineLogger
from .datasets import DatasetSpec, LOAD_DATE_COLUMN, get_dataset
from .errors import TransformationError
from .resolvers import Resolvers, UNKNOWN, as_objects, clean_text

logger = get_logger(__name__)

ROW_ORDER_COLUMN = "_source_row"

LATEST = "latest"
FIRST_SEEN = "first_seen"

UNMAPPED_UNKNOWN = "unknown"
UNMAPPED_PASSTHROUGH = "passthrough"

STAGES = (
    "filter",
    "deduplicate",
    "normalize",
    "map_codes",
    "validate",
    "recompute",
    "cross_reference",
    "rename",
    "stamp",
)


@dataclass(frozen=True)
class DedupPolicy:
    strategy: str = FIRST_SEEN
    order_by: Optional[str] = None

    def __post_init__(self):
        if self.strategy not in (LATEST, FIRST_SEEN):
            raise ValueError(f"Unknown deduplication strategy: {self.strategy}")
        if self.strategy == LATEST and not self.order_by:
            raise ValueError("Deduplication strategy 'latest' needs an order_by field")


DEFAULT_DEDUP_POLICIES: Dict[str, DedupPolicy] = {
    "crm_customer_info": DedupPolicy(LATEST, "create_date"),
    "crm_product_data": DedupPolicy(LATEST, "start_data"),
    "crm_sales_order": DedupPolicy(LATEST, "order_date"),
    "erp_category_map": DedupPolicy(FIRST_SEEN),
    "erp_product_specs": DedupPolicy(FIRST_SEEN),
    "erp_stores": DedupPolicy(FIRST_SEEN),
    "erp_returns": DedupPolicy(LATEST, "return_date"),
    "erp_spatial_data": DedupPolicy(FIRST_SEEN),
    "erp_territory": DedupPolicy(FIRST_SEEN),
}


@dataclass(frozen=True)
class CodeMapping:
    # mapping: biến thể viết thường -> giá trị chuẩn. So khớp không phân biệt hoa thường.
    field: str
    mapping: Mapping[str, str]
    unmapped: str = UNMAPPED_UNKNOWN

    @property
    def vocabulary(self) -> List[str]:
        return sorted(set(self.mapping.values()) | {UNKNOWN})

    def with_policy(self, unmapped: str) -> "CodeMapping":
        if unmapped not in (UNMAPPED_UNKNOWN, UNMAPPED_PASSTHROUGH):
            raise ValueError(f"Unknown unmapped policy for {self.field}: {unmapped}")
        return CodeMapping(self.field, self.mapping, unmapped)

    def translate(self, value) -> str:
        text = clean_text(value)
        if text is None:
            return UNKNOWN
        canonical = self.mapping.get(text.lower())
        if canonical is not None:
            return canonical
        return UNKNOWN if self.unmapped == UNMAPPED_UNKNOWN else text

    def apply(self, values: pd.Series) -> pd.Series:
        return values.map(self.translate).astype(object)


def _identity_codes(*values: str) -> Dict[str, str]:
    return {v.lower(): v for v in values}


PRODUCT_LINE_CODES = _identity_codes("Standard", "Road", "Mountain", "Touring")

CODE_MAPPINGS: Dict[str, Tuple[CodeMapping, ...]] = {
    "crm_customer_info": (
        CodeMapping("marital_status", {
            "m": "Married", "married": "Married",
            "s": "Single", "single": "Single",
            "d": "Divorced", "divorced": "Divorced",
        }),
        CodeMapping("gender", {
            "male": "Male", "m": "Male",
            "female": "Female", "f": "Female",
            "n/a": UNKNOWN,
        }),
    ),
    "crm_product_data": (
        CodeMapping("product_line", PRODUCT_LINE_CODES),
    ),
    "erp_product_specs": (
        CodeMapping("maintenance_required", {
            "yes": "Yes", "y": "Yes", "1": "Yes", "true": "Yes",
            "no": "No", "n": "No", "0": "No", "false": "No",
        }),
        CodeMapping("product_line", PRODUCT_LINE_CODES),
    ),
    "erp_stores": (
        CodeMapping("store_type", _identity_codes("Flagship", "Retail", "Online", "Outlet"),
                    UNMAPPED_PASSTHROUGH),
        CodeMapping("region", _identity_codes("Asia-Pacific", "Latin America", "Europe", "North America"),
                    UNMAPPED_PASSTHROUGH),
    ),
    "erp_returns": (
        CodeMapping("return_reason", _identity_codes("Wrong Item", "Size Mismatch", "Unsatisfied", "Defective"),
                    UNMAPPED_PASSTHROUGH),
    ),
}

# trim: chỉ trim (rỗng -> null); proper_case: trim + viết hoa chữ đầu; unknown_if_blank: rỗng -> "Unknown"
TEXT_RULES: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "crm_customer_info": {"trim": ("customer_number",), "proper_case": ("first_name", "last_name")},
    "crm_product_data": {"trim": ("product_number", "product_name")},
    "crm_sales_order": {"trim": ("order_number",)},
    "erp_category_map": {"trim": ("category_id",), "unknown_if_blank": ("category", "subcategory")},
    "erp_product_specs": {},
    "erp_stores": {"trim": ("store_name",)},
    "erp_returns": {"trim": ("order_number",)},
    "erp_spatial_data": {"trim": ("country",), "unknown_if_blank": ("city",)},
    "erp_territory": {"trim": ("city",), "unknown_if_blank": ("country", "continent")},
}

# positive: <= 0 -> null; not_before: (cột, mốc) -> null nếu cột < mốc; absolute: lấy trị tuyệt đối
VALIDATION_RULES: Dict[str, Dict[str, Tuple]] = {
    "crm_product_data": {"positive": ("cost",)},
    "crm_sales_order": {
        "positive": ("quantity", "price"),
        "not_before": (("shipping_date", "order_date"), ("due_date", "order_date")),
    },
    "erp_returns": {"absolute": ("return_amount",)},
}


@dataclass
class CleansingOutcome:
    dataset: str
    frame: pd.DataFrame
    rows_read: int
    rows_rejected: int
    rows_deduplicated: int
    warnings: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def rows_loaded(self) -> int:
        return len(self.frame)


def _trim(values: pd.Series) -> pd.Series:
    return as_objects(values.map(clean_text))


def _flag(condition: pd.Series) -> pd.Series:
    # so sánh trên cột nullable (Int64) trả về <NA>; null không bao giờ vi phạm
    return condition.fillna(False).astype(bool)


def _or_unknown(values: pd.Series) -> pd.Series:
    return values.where(values.notna(), UNKNOWN).astype(object)


def _proper_case(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value[:1].upper() + value[1:].lower()


class CleansingEngine:
    # Engine dùng chung cho 9 dataset; không giữ state giữa các dataset

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        cleansing_config = self.config.get("cleansing", {}) or {}
        self.dedup_policies = self._load_dedup_policies(cleansing_config.get("deduplication", {}) or {})
        self.code_mappings = self._load_code_mappings(cleansing_config.get("code_policies", {}) or {})
        self.pipeline_logger = PipelineLogger(__name__)

    def _load_dedup_policies(self, overrides: Dict[str, Any]) -> Dict[str, DedupPolicy]:
        policies = dict(DEFAULT_DEDUP_POLICIES)
        for dataset, policy in overrides.items():
            spec = get_dataset(dataset)
            policy = DedupPolicy(policy.get("strategy", FIRST_SEEN), policy.get("order_by"))
            if policy.order_by:
                spec.field(policy.order_by)
            policies[dataset] = policy
        return policies

    def _load_code_mappings(self, overrides: Dict[str, Any]) -> Dict[str, Tuple[CodeMapping, ...]]:
        mappings = dict(CODE_MAPPINGS)
        for dataset, fields in overrides.items():
            get_dataset(dataset)
            current = {m.field: m for m in mappings.get(dataset, ())}
            for field_name, unmapped in (fields or {}).items():
                if field_name not in current:
                    raise ValueError(f"{dataset}.{field_name} has no code mapping")
                current[field_name] = current[field_name].with_policy(unmapped)
            mappings[dataset] = tuple(current.values())
        return mappings

    def dedup_policy(self, dataset: str) -> DedupPolicy:
        return self.dedup_policies[dataset]

    def vocabulary(self, dataset: str, field_name: str) -> List[str]:
        for mapping in self.code_mappings.get(dataset, ()):
            if mapping.field == field_name:
                return mapping.vocabulary
        raise KeyError(f"{dataset}.{field_name} has no code mapping")

    # Hàm chính: chạy toàn bộ stage cho một dataset, trả về frame clean mới (chưa ghi vào store)
    def cleanse(
        self,
        dataset: str,
        raw: pd.DataFrame,
        resolvers: Optional[Resolvers] = None,
        loaded_at: Optional[datetime] = None,
    ) -> CleansingOutcome:
        spec = get_dataset(dataset)
        resolvers = resolvers or Resolvers.empty()
        loaded_at = loaded_at or datetime.now()
        started = time.perf_counter()

        outcome = CleansingOutcome(
            dataset=dataset, frame=raw, rows_read=len(raw), rows_rejected=0, rows_deduplicated=0
        )
        self.pipeline_logger.log_processing_start(f"cleanse:{dataset}", len(raw))

        steps: List[Tuple[str, Callable[[DatasetSpec, pd.DataFrame], pd.DataFrame]]] = [
            ("filter", lambda s, df: self._filter_keys(s, df, outcome)),
            ("deduplicate", lambda s, df: self._deduplicate(s, df, outcome)),
            ("normalize", self._normalize_text),
            ("map_codes", lambda s, df: self._map_codes(s, df, resolvers, outcome)),
            ("validate", self._validate_values),
            ("recompute", self._recompute),
            ("cross_reference", lambda s, df: self._cross_reference(s, df, resolvers, outcome)),
            ("rename", self._rename),
            ("stamp", lambda s, df: self._stamp(s, df, loaded_at)),
        ]

        df = raw
        for stage, step in steps:
            try:
                df = step(spec, df)
            except Exception as e:
                self.pipeline_logger.log_error(
                    "cleanse", str(e), {"dataset": dataset, "stage": stage}
                )
                raise TransformationError(dataset, stage, e) from e

        outcome.frame = df
        outcome.duration_seconds = time.perf_counter() - started
        for warning in outcome.warnings:
            logger.warning("Cleansing warning", dataset=dataset, warning=warning)
        self.pipeline_logger.log_processing_complete(
            f"cleanse:{dataset}", outcome.rows_read, outcome.rows_loaded, outcome.duration_seconds
        )
        return outcome

    # bước 1: bỏ dòng có business key null/rỗng (key dạng text được trim trước)
    def _filter_keys(self, spec: DatasetSpec, df: pd.DataFrame, outcome: CleansingOutcome) -> pd.DataFrame:
        df = df.copy()
        df[ROW_ORDER_COLUMN] = np.arange(len(df))
        if spec.key_is_text:
            df[spec.key] = _trim(df[spec.key])
        kept = df[df[spec.key].notna()]
        outcome.rows_rejected = len(df) - len(kept)
        return kept

    # bước 2: giữ một dòng mỗi key; tie-break phụ luôn là thứ tự dòng gốc
    def _deduplicate(self, spec: DatasetSpec, df: pd.DataFrame, outcome: CleansingOutcome) -> pd.DataFrame:
        policy = self.dedup_policy(spec.name)
        if policy.strategy == LATEST:
            ordered = df.sort_values(
                [policy.order_by, ROW_ORDER_COLUMN],
                ascending=[False, True],
                na_position="last",
                kind="mergesort",
            )
        else:
            ordered = df.sort_values(ROW_ORDER_COLUMN, kind="mergesort")

        deduped = ordered.drop_duplicates(subset=[spec.key], keep="first")
        outcome.rows_deduplicated = len(df) - len(deduped)
        return deduped.sort_values(ROW_ORDER_COLUMN, kind="mergesort")

    # bước 3: trim, proper case, rỗng -> Unknown
    def _normalize_text(self, spec: DatasetSpec, df: pd.DataFrame) -> pd.DataFrame:
        rules = TEXT_RULES.get(spec.name, {})
        df = df.copy()
        for column in rules.get("trim", ()):
            df[column] = _trim(df[column])
        for column in rules.get("proper_case", ()):
            df[column] = _or_unknown(_trim(df[column]).map(_proper_case))
        for column in rules.get("unknown_if_blank", ()):
            df[column] = _or_unknown(_trim(df[column]))
        return df

    # bước 4: chuẩn hoá mã về bộ từ vựng đóng; subcategory đi qua CategoryNormalizer
    def _map_codes(
        self,
        spec: DatasetSpec,
        df: pd.DataFrame,
        resolvers: Resolvers,
        outcome: CleansingOutcome,
    ) -> pd.DataFrame:
        df = df.copy()
        for mapping in self.code_mappings.get(spec.name, ()):
            df[mapping.field] = mapping.apply(df[mapping.field])

        if spec.name == "erp_product_specs":
            normalizer = resolvers.category
            df["subcategory"] = _or_unknown(normalizer.normalize_series(df["subcategory"]))
            unmatched = normalizer.unmatched(df["subcategory"])
            if unmatched:
                outcome.warnings.append(
                    f"subcategories not found in category map: {sorted(unmatched)}"
                )
        return df

    # bước 5: giá trị số/ngày; chuyển kiểu strict để lỗi kiểu dữ liệu nổ ở đây
    def _validate_values(self, spec: DatasetSpec, df: pd.DataFrame) -> pd.DataFrame:
        rules = VALIDATION_RULES.get(spec.name, {})
        df = df.copy()
        for column in rules.get("positive", ()):
            values = pd.to_numeric(df[column], errors="raise")
            df[column] = values.mask(_flag(values <= 0))
        for column, anchor in rules.get("not_before", ()):
            values = pd.to_datetime(df[column], errors="raise")
            anchor_values = pd.to_datetime(df[anchor], errors="raise")
            df[column] = values.mask(_flag(values < anchor_values))
        for column in rules.get("absolute", ()):
            df[column] = pd.to_numeric(df[column], errors="raise").abs()
        return df

    # bước 6: sales_amount = quantity * price khi cả hai hợp lệ, ngược lại giữ giá trị cũ
    def _recompute(self, spec: DatasetSpec, df: pd.DataFrame) -> pd.DataFrame:
        if spec.name != "crm_sales_order":
            return df
        df = df.copy()
        quantity = pd.to_numeric(df["quantity"], errors="raise").astype("float64")
        price = pd.to_numeric(df["price"], errors="raise").astype("float64")
        original = pd.to_numeric(df["sales_amount"], errors="raise").astype("float64")
        valid = quantity.notna() & price.notna()
        df["sales_amount"] = (quantity * price).where(valid, original)
        return df

    # bước 7: country lấy theo territory (city -> country); không khớp thì giữ bản gốc đã trim
    def _cross_reference(
        self,
        spec: DatasetSpec,
        df: pd.DataFrame,
        resolvers: Resolvers,
        outcome: CleansingOutcome,
    ) -> pd.DataFrame:
        if spec.name != "erp_spatial_data":
            return df
        territory = resolvers.territory
        if territory.is_empty:
            outcome.warnings.append("territory resolver is empty; country left uncorrected")
        df = df.copy()
        corrected = territory.countries(df["city"])
        df["country"] = _or_unknown(corrected.where(corrected.notna(), df["country"]))
        return df

    # bước 8: sửa tên cột sai ở nguồn (start_data -> start_date)
    def _rename(self, spec: DatasetSpec, df: pd.DataFrame) -> pd.DataFrame:
        if not spec.renames:
            return df
        return df.rename(columns=dict(spec.renames))

    # bước 9: gắn dwh_load_date, bỏ cột nội bộ, reset index
    def _stamp(self, spec: DatasetSpec, df: pd.DataFrame, loaded_at: datetime) -> pd.DataFrame:
        df = df.drop(columns=[ROW_ORDER_COLUMN]).copy()
        df[LOAD_DATE_COLUMN] = pd.Timestamp(loaded_at)
        return df[spec.clean_columns].reset_index(drop=True)
