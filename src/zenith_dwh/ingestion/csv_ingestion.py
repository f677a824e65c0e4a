# Đọc 9 file CSV nguồn (CRM + ERP) vào RawRecordStore
# Mọi ô đọc dạng text, ô rỗng -> null, text giữ nguyên khoảng trắng.
# Mỗi file được validate (Cerberus) rồi mới ép kiểu; file lỗi -> dataset unavailable.

import pandas as pd
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime
import json
import time

from ..utils.config import ConfigManager
from ..utils.logging_config import get_logger, PipelineLogger
from ..utils.data_validation import DataValidator, build_schema
from ..processing.datasets import DATASET_NAMES, get_dataset
from ..storage.record_store import RawRecordStore, write_parquet

logger = get_logger(__name__)


class CSVIngestion:
    # Đọc CSV, validate dữ liệu, ghi vào raw store và (tuỳ chọn) snapshot Parquet
    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}
        self.validator = DataValidator()
        self.ingestion_timestamp = datetime.now().isoformat()
        self.pipeline_logger = PipelineLogger(__name__)

        csv_config = self.config.get("data_sources", {}).get("csv", {}) or {}
        self.source_dirs = {
            "crm": csv_config.get("crm_dir", "data/raw/crm"),
            "erp": csv_config.get("erp_dir", "data/raw/erp"),
        }
        self.delimiter = csv_config.get("delimiter", ",")
        self.encoding = csv_config.get("encoding", "utf-8")
        self.snapshot_dir = self.config.get("storage", {}).get("raw_snapshot_dir")

    def source_path(self, dataset: str) -> Path:
        spec = get_dataset(dataset)
        return Path(self.source_dirs[spec.source]) / f"{dataset}.csv"

    # Nạp toàn bộ 9 dataset; dataset lỗi không làm dừng các dataset còn lại
    def ingest_all(self, store: Optional[RawRecordStore] = None) -> RawRecordStore:
        store = store or RawRecordStore()
        started = time.perf_counter()
        for dataset in DATASET_NAMES:
            self.ingest_dataset(dataset, store)

        available = sum(1 for name in DATASET_NAMES if store.is_available(name))
        logger.info(
            "CSV ingestion completed",
            datasets_available=available,
            datasets_unavailable=len(DATASET_NAMES) - available,
            duration_seconds=round(time.perf_counter() - started, 3),
        )
        return store

    def ingest_dataset(self, dataset: str, store: RawRecordStore) -> Dict[str, Any]:
        input_path = self.source_path(dataset)
        self.pipeline_logger.log_ingestion_start(dataset, str(input_path))
        started = time.perf_counter()

        try:
            df = self._read_csv(input_path)
            spec = get_dataset(dataset)

            # Bước 1: đủ cột bắt buộc
            completeness = self.validator.validate_data_completeness(df, spec.required_columns)
            if not completeness["is_valid"]:
                raise ValueError("; ".join(completeness["errors"]))

            # Bước 2: cột optional thiếu thì thêm (toàn null)
            for f in spec.fields:
                if f.name not in df.columns:
                    df[f.name] = None

            # Bước 3: validate từng dòng theo định dạng int / decimal / date
            validation_result = self.validator.validate_dataframe(df, build_schema(spec))
            if not validation_result["is_valid"]:
                logger.error(f"Data validation failed for {dataset}: {validation_result['errors']}")
                raise ValueError(
                    f"{validation_result['invalid_records']} invalid rows, "
                    f"first errors: {validation_result['errors'][:3]}"
                )

        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            self.pipeline_logger.log_error("csv_ingestion", reason, {"dataset": dataset, "file": str(input_path)})
            store.mark_unavailable(dataset, reason, str(input_path))
            return self._generate_metadata(dataset, input_path, 0, status="failed", error=reason)

        store.put(dataset, df, str(input_path))
        if not store.is_available(dataset):
            reason = store.unavailable_reasons()[dataset]
            return self._generate_metadata(dataset, input_path, 0, status="failed", error=reason)

        snapshot = None
        if self.snapshot_dir:
            snapshot = self._snapshot(dataset, store.get(dataset))

        self.pipeline_logger.log_ingestion_complete(
            dataset, len(df), time.perf_counter() - started
        )
        return self._generate_metadata(dataset, input_path, len(df), snapshot=snapshot)

    def _read_csv(self, input_path: Path) -> pd.DataFrame:
        if not input_path.exists():
            raise FileNotFoundError(f"Source file not found: {input_path}")

        # dtype=str + keep_default_na=False: chuỗi như "n/a" được giữ nguyên, chỉ ô rỗng là null
        return pd.read_csv(
            input_path,
            delimiter=self.delimiter,
            encoding=self.encoding,
            dtype=str,
            keep_default_na=False,
            na_values=[""],
            skipinitialspace=False,
        )

    def _snapshot(self, dataset: str, df: pd.DataFrame) -> str:
        # Bản chụp raw dạng Parquet, tên file theo thời điểm ingest
        stamp = self.ingestion_timestamp.replace(":", "").replace("-", "")
        path = Path(self.snapshot_dir) / dataset / f"{dataset}_{stamp}.parquet"
        return write_parquet(df, path)

    def _generate_metadata(
        self,
        dataset: str,
        input_path: Path,
        row_count: int,
        status: str = "success",
        error: Optional[str] = None,
        snapshot: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {
            "dataset": dataset,
            "ingestion_timestamp": self.ingestion_timestamp,
            "input_file": str(input_path),
            "snapshot_file": snapshot,
            "row_count": row_count,
            "status": status,
            "error": error,
        }


def main():

    import argparse

    parser = argparse.ArgumentParser(description="CSV Data Ingestion")
    parser.add_argument("--config", default="config/config.yaml", help="Configuration file")
    parser.add_argument("--dataset", help="Ingest only this dataset")

    args = parser.parse_args()

    config_manager = ConfigManager()
    config = config_manager.load_config(args.config)

    ingestion = CSVIngestion(config)
    store = RawRecordStore()
    if args.dataset:
        results = [ingestion.ingest_dataset(args.dataset, store)]
    else:
        ingestion.ingest_all(store)
        results = store.metadata()

    print(json.dumps(results, indent=2, default=str))


if __name__ == "__main__":
    main()
