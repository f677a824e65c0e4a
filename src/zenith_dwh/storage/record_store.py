# Kho dữ liệu trong bộ nhớ cho hai lớp
# - RawRecordStore: bản chụp thô (bronze) của 9 file nguồn, mỗi lần chạy nạp lại toàn bộ
# - CleanRecordStore: dữ liệu đã làm sạch (silver), chỉ cleansing engine được ghi
# Clean store thay cả frame một lần dưới lock; người đọc luôn nhận bản copy.

import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from ..utils.logging_config import get_logger
from ..processing.datasets import DATASET_NAMES, get_dataset
from ..processing.errors import DatasetUnavailableError

logger = get_logger(__name__)


@dataclass
class RawBatch:
    dataset: str
    frame: Optional[pd.DataFrame]
    source_file: Optional[str] = None
    loaded_at: str = field(default_factory=lambda: datetime.now().isoformat())
    error: Optional[DatasetUnavailableError] = None

    @property
    def available(self) -> bool:
        return self.frame is not None and self.error is None

    @property
    def row_count(self) -> int:
        return len(self.frame) if self.frame is not None else 0


class RawRecordStore:
    # Dataset lỗi đầu vào được ghi nhận là unavailable, các dataset khác không bị ảnh hưởng

    def __init__(self):
        self._batches: Dict[str, RawBatch] = {}
        self._loaded = False

    @classmethod
    def from_frames(cls, frames: Dict[str, pd.DataFrame]) -> "RawRecordStore":
        store = cls()
        store.load_frames(frames)
        return store

    def load_frames(self, frames: Dict[str, Optional[pd.DataFrame]]) -> None:
        # Nạp lại toàn bộ: dataset nào không có trong frames coi như thiếu file
        self._batches = {}
        for name in DATASET_NAMES:
            df = frames.get(name)
            if df is None:
                self.mark_unavailable(name, "no data supplied")
            else:
                self.put(name, df)
        self._loaded = True

    def put(self, dataset: str, frame: pd.DataFrame, source_file: Optional[str] = None) -> None:
        spec = get_dataset(dataset)
        try:
            coerced = spec.coerce(frame)
        except (KeyError, ValueError, TypeError) as e:
            self.mark_unavailable(dataset, f"{type(e).__name__}: {e}", source_file)
            return
        self._batches[dataset] = RawBatch(dataset, coerced, source_file)
        self._loaded = True

    def mark_unavailable(self, dataset: str, reason: str, source_file: Optional[str] = None) -> None:
        get_dataset(dataset)
        error = DatasetUnavailableError(dataset, reason)
        logger.warning("Dataset unavailable", dataset=dataset, reason=reason)
        self._batches[dataset] = RawBatch(dataset, None, source_file, error=error)
        self._loaded = True

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def batch(self, dataset: str) -> RawBatch:
        get_dataset(dataset)
        if dataset not in self._batches:
            return RawBatch(dataset, None, error=DatasetUnavailableError(dataset, "not loaded"))
        return self._batches[dataset]

    def get(self, dataset: str) -> pd.DataFrame:
        batch = self.batch(dataset)
        if not batch.available:
            raise batch.error
        return batch.frame.copy()

    def is_available(self, dataset: str) -> bool:
        return self.batch(dataset).available

    def frames(self, names: Optional[Iterable[str]] = None) -> Dict[str, Optional[pd.DataFrame]]:
        names = list(names) if names is not None else DATASET_NAMES
        return {name: (self.get(name) if self.is_available(name) else None) for name in names}

    def unavailable_reasons(self) -> Dict[str, str]:
        return {
            name: batch.error.reason
            for name, batch in self._batches.items()
            if not batch.available
        }

    def metadata(self) -> List[Dict[str, Any]]:
        return [
            {
                "dataset": b.dataset,
                "source_file": b.source_file,
                "loaded_at": b.loaded_at,
                "row_count": b.row_count,
                "status": "available" if b.available else "unavailable",
                "error": b.error.reason if b.error else None,
            }
            for b in self._batches.values()
        ]


class CleanRecordStore:

    def __init__(self):
        self._lock = threading.Lock()
        self._frames: Dict[str, pd.DataFrame] = {}
        self._updated_at: Dict[str, str] = {}

    def replace(self, dataset: str, frame: pd.DataFrame) -> None:
        # frame phải hoàn chỉnh; thay thế nguyên khối, không ghi từng phần
        get_dataset(dataset)
        with self._lock:
            self._frames[dataset] = frame
            self._updated_at[dataset] = datetime.now().isoformat()
        logger.info("Clean dataset replaced", dataset=dataset, rows=len(frame))

    def has(self, dataset: str) -> bool:
        with self._lock:
            return dataset in self._frames

    def get(self, dataset: str) -> pd.DataFrame:
        with self._lock:
            if dataset not in self._frames:
                raise KeyError(f"Clean dataset {dataset} has not been populated")
            return self._frames[dataset].copy()

    def snapshot(self, names: Optional[Iterable[str]] = None) -> Dict[str, Optional[pd.DataFrame]]:
        # Một lần lấy lock cho nhiều dataset: các view luôn đọc cùng một trạng thái
        names = list(names) if names is not None else DATASET_NAMES
        with self._lock:
            return {
                name: (self._frames[name].copy() if name in self._frames else None)
                for name in names
            }

    def datasets(self) -> List[str]:
        with self._lock:
            return [name for name in DATASET_NAMES if name in self._frames]

    def updated_at(self, dataset: str) -> Optional[str]:
        with self._lock:
            return self._updated_at.get(dataset)

    def export_parquet(self, output_dir: str, names: Optional[Iterable[str]] = None) -> Dict[str, str]:
        # Ghi mỗi dataset ra <output_dir>/<dataset>.parquet (ghi file tạm rồi đổi tên)
        output = Path(output_dir)
        output.mkdir(parents=True, exist_ok=True)
        written = {}
        for name, df in self.snapshot(names).items():
            if df is None:
                continue
            written[name] = write_parquet(df, output / f"{name}.parquet")
        logger.info("Clean datasets exported", output_dir=str(output), datasets=len(written))
        return written


def write_parquet(df: pd.DataFrame, path: Path) -> str:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    table = pa.Table.from_pandas(df, preserve_index=False)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".parquet.tmp")
    os.close(fd)
    try:
        pq.write_table(table, tmp_path, compression="snappy")
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    return str(path)
