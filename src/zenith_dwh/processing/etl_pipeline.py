# Main ETL pipeline: raw (bronze) -> quality checks -> cleansing (silver) -> views (gold)
# Hai thao tác điều khiển: run_quality_checks(scope) và run_cleansing(scope), gọi lại bao nhiêu lần cũng được:
# mỗi lần chạy thay toàn bộ output của các dataset trong scope.
# Lỗi của một dataset được ghi vào RunReport, không chặn các dataset độc lập khác.

import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from ..utils.config import ConfigManager
from ..utils.logging_config import get_logger, MetricsLogger
from ..storage.record_store import RawRecordStore, CleanRecordStore
from .cleansing import CleansingEngine
from .data_quality import DataQualityChecker, QualityReport, CROSS_SOURCE
from .datasets import resolve_scope
from .errors import (
    DatasetUnavailableError,
    DependencyOrderError,
    ResolverUnavailableError,
    TransformationError,
)
from .resolvers import CategoryNormalizer, Resolvers, TerritoryResolver

logger = get_logger(__name__)

LOADED = "loaded"
FAILED = "failed"
SKIPPED = "skipped"

TERRITORY_SOURCE = "erp_territory"
CATEGORY_SOURCE = "erp_category_map"
# dataset -> nguồn resolver mà bước cross_reference bắt buộc phải có
RESOLVER_DEPENDENCIES = {"erp_spatial_data": TERRITORY_SOURCE}


@dataclass
class DatasetLoadResult:
    dataset: str
    status: str
    rows_read: int = 0
    rows_loaded: int = 0
    rows_rejected: int = 0
    rows_deduplicated: int = 0
    stage: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dataset": self.dataset,
            "status": self.status,
            "rows_read": self.rows_read,
            "rows_loaded": self.rows_loaded,
            "rows_rejected": self.rows_rejected,
            "rows_deduplicated": self.rows_deduplicated,
            "stage": self.stage,
            "error": self.error,
            "warnings": list(self.warnings),
            "duration_seconds": round(self.duration_seconds, 4),
        }


@dataclass
class RunReport:
    started_at: str
    finished_at: Optional[str] = None
    datasets: Dict[str, DatasetLoadResult] = field(default_factory=dict)
    quality_reports: Dict[str, QualityReport] = field(default_factory=dict)
    exports: Dict[str, str] = field(default_factory=dict)

    def succeeded(self) -> List[str]:
        return [name for name, r in self.datasets.items() if r.status == LOADED]

    def failed(self) -> List[str]:
        return [name for name, r in self.datasets.items() if r.status == FAILED]

    def skipped(self) -> List[str]:
        return [name for name, r in self.datasets.items() if r.status == SKIPPED]

    @property
    def status(self) -> str:
        if not self.failed() and not self.skipped():
            return "success"
        return "partial" if self.succeeded() else "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "status": self.status,
            "datasets": {name: r.to_dict() for name, r in self.datasets.items()},
            "quality_reports": {layer: q.to_dict() for layer, q in self.quality_reports.items()},
            "exports": dict(self.exports),
        }


class ETLPipeline:

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        raw_store: Optional[RawRecordStore] = None,
        clean_store: Optional[CleanRecordStore] = None,
    ):
        self.config = config or {}
        self.raw_store = raw_store if raw_store is not None else RawRecordStore()
        self.clean_store = clean_store if clean_store is not None else CleanRecordStore()
        self.quality_checker = DataQualityChecker(self.config)
        self.engine = CleansingEngine(self.config)
        self.metrics = MetricsLogger(__name__)

        cleansing_config = self.config.get("cleansing", {}) or {}
        resolver_config = cleansing_config.get("resolvers", {}) or {}
        self.territory_required = bool((resolver_config.get("territory", {}) or {}).get("required", False))
        self.subcategory_substitutions = (resolver_config.get("category", {}) or {}).get("substitutions")

    def ingest(self) -> RawRecordStore:
        # Nạp lại raw store từ CSV theo config
        from ..ingestion.csv_ingestion import CSVIngestion

        return CSVIngestion(self.config).ingest_all(self.raw_store)

    # Chạy catalog check trên lớp raw (mặc định) hoặc clean; chỉ đọc, không ghi gì
    def run_quality_checks(
        self,
        dataset_scope: Optional[Union[str, Iterable[str]]] = None,
        layer: str = "raw",
        as_of: Optional[datetime] = None,
    ) -> QualityReport:
        if layer == "raw":
            if not self.raw_store.is_loaded:
                raise DependencyOrderError("Quality checks requested before the raw record store was loaded")
            frames = self.raw_store.frames()
            unavailable = self.raw_store.unavailable_reasons()
        elif layer == "clean":
            frames = self.clean_store.snapshot()
            unavailable = {name: "not cleansed yet" for name, df in frames.items() if df is None}
        else:
            raise ValueError(f"Unknown layer: {layer}")

        started = time.perf_counter()
        report = self.quality_checker.check_data_quality(
            frames, scope=dataset_scope, as_of=as_of, layer=layer, unavailable=unavailable
        )
        self.metrics.log_timing("quality_checks", time.perf_counter() - started, {"layer": layer})
        return report

    # Làm sạch các dataset trong scope theo thứ tự phụ thuộc
    def run_cleansing(
        self,
        dataset_scope: Optional[Union[str, Iterable[str]]] = None,
        loaded_at: Optional[datetime] = None,
    ) -> RunReport:
        if not self.raw_store.is_loaded:
            raise DependencyOrderError("Cleansing requested before the raw record store was loaded")

        names = resolve_scope(dataset_scope)
        self._check_resolver_sources(names)

        loaded_at = loaded_at or datetime.now()
        report = RunReport(started_at=datetime.now().isoformat())
        logger.info("Starting cleansing run", datasets=names)

        for name in names:
            result = self._cleanse_dataset(name, report, loaded_at)
            report.datasets[name] = result
            self.metrics.log_timing("cleanse", result.duration_seconds, {"dataset": name, "status": result.status})
            # số dòng bị loại / gộp trùng của từng dataset
            if result.rows_rejected:
                self.metrics.log_counter("rows_rejected", result.rows_rejected, {"dataset": name})
            if result.rows_deduplicated:
                self.metrics.log_counter("rows_deduplicated", result.rows_deduplicated, {"dataset": name})

        report.finished_at = datetime.now().isoformat()
        logger.info(
            "Cleansing run completed",
            status=report.status,
            loaded=report.succeeded(),
            failed=report.failed(),
            skipped=report.skipped(),
        )
        return report

    # Toàn bộ pipeline: check raw -> cleansing -> (tuỳ chọn) check clean -> (tuỳ chọn) export Parquet
    def run_pipeline(
        self,
        dataset_scope: Optional[Union[str, Iterable[str]]] = None,
        as_of: Optional[datetime] = None,
    ) -> RunReport:
        try:
            if not self.raw_store.is_loaded:
                self.ingest()

            quality_config = self.config.get("quality", {}) or {}
            check_scope = self._quality_scope(dataset_scope)
            raw_quality = self.run_quality_checks(check_scope, layer="raw", as_of=as_of)

            report = self.run_cleansing(dataset_scope)
            report.quality_reports["raw"] = raw_quality

            if quality_config.get("run_on_clean", False):
                report.quality_reports["clean"] = self.run_quality_checks(check_scope, layer="clean", as_of=as_of)

            output_dir = (self.config.get("storage", {}) or {}).get("clean_output_dir")
            if output_dir:
                report.exports = self.clean_store.export_parquet(output_dir, report.succeeded())

            logger.info("ETL pipeline completed", status=report.status)
            return report

        except Exception as e:
            logger.error(f"ETL pipeline failed: {str(e)}")
            raise

    def _quality_scope(self, dataset_scope) -> Optional[List[str]]:
        if dataset_scope is None:
            return None
        return resolve_scope(dataset_scope) + [CROSS_SOURCE]

    def _check_resolver_sources(self, names: List[str]) -> None:
        # nguồn resolver ngoài scope thì phải có sẵn trong clean store từ lần chạy trước
        for dataset, source in RESOLVER_DEPENDENCIES.items():
            if dataset in names and source not in names and not self.clean_store.has(source):
                raise DependencyOrderError(
                    f"{dataset} needs the {source} resolver, but {source} is not in scope "
                    f"and has never been cleansed",
                    details={"dataset": dataset, "resolver_source": source},
                )

    def _cleanse_dataset(self, name: str, report: RunReport, loaded_at: datetime) -> DatasetLoadResult:
        started = time.perf_counter()
        warnings: List[str] = []

        try:
            raw = self.raw_store.get(name)
        except DatasetUnavailableError as e:
            return DatasetLoadResult(
                name, FAILED, stage="ingest", error=str(e), duration_seconds=time.perf_counter() - started
            )

        try:
            resolvers = self._build_resolvers(name, report, warnings)
        except ResolverUnavailableError as e:
            return DatasetLoadResult(
                name, FAILED, rows_read=len(raw), stage="resolve", error=str(e),
                duration_seconds=time.perf_counter() - started,
            )
        if resolvers is None:
            source = RESOLVER_DEPENDENCIES[name]
            return DatasetLoadResult(
                name, SKIPPED, rows_read=len(raw), stage="resolve",
                error=f"resolver source {source} failed to cleanse in this run",
                duration_seconds=time.perf_counter() - started,
            )

        try:
            outcome = self.engine.cleanse(name, raw, resolvers=resolvers, loaded_at=loaded_at)
        except TransformationError as e:
            return DatasetLoadResult(
                name, FAILED, rows_read=len(raw), stage=e.stage, error=str(e), warnings=warnings,
                duration_seconds=time.perf_counter() - started,
            )

        # chỉ ghi vào clean store khi mọi stage đã thành công
        self.clean_store.replace(name, outcome.frame)
        return DatasetLoadResult(
            name,
            LOADED,
            rows_read=outcome.rows_read,
            rows_loaded=outcome.rows_loaded,
            rows_rejected=outcome.rows_rejected,
            rows_deduplicated=outcome.rows_deduplicated,
            warnings=warnings + outcome.warnings,
            duration_seconds=time.perf_counter() - started,
        )

    def _build_resolvers(self, name: str, report: RunReport, warnings: List[str]) -> Optional[Resolvers]:
        # None = nguồn resolver lỗi trong chính lần chạy này -> dataset phụ thuộc bị skip
        category = self._category_normalizer()
        if name not in RESOLVER_DEPENDENCIES:
            return Resolvers(TerritoryResolver.empty(), category)

        source = RESOLVER_DEPENDENCIES[name]
        source_result = report.datasets.get(source)
        if source_result is not None and source_result.status != LOADED:
            if source_result.stage not in ("ingest", "resolve"):
                return None
            # nguồn không đọc được: dùng resolver rỗng (giữ giá trị gốc) trừ khi config bắt buộc
            territory = TerritoryResolver.empty()
            reason = f"{source} is unavailable ({source_result.error})"
        else:
            territory = TerritoryResolver.from_frame(self.clean_store.get(source))
            reason = f"{source} is empty"

        if territory.is_empty:
            if self.territory_required:
                raise ResolverUnavailableError("territory", name, reason)
            warnings.append(f"territory resolver unavailable: {reason}")
            logger.warning("Territory resolver unavailable", dataset=name, reason=reason)
        return Resolvers(territory, category)

    def _category_normalizer(self) -> CategoryNormalizer:
        # bảng thay thế là tĩnh; category map (nếu có) chỉ dùng để cảnh báo nhãn lạ
        category_map = self.clean_store.snapshot([CATEGORY_SOURCE])[CATEGORY_SOURCE]
        return CategoryNormalizer.from_frame(category_map, self.subcategory_substitutions)


def main():
    import argparse

    from ..utils.logging_config import setup_logging

    parser = argparse.ArgumentParser(description="Zenith DWH ETL pipeline")
    parser.add_argument("--config", default="config/config.yaml", help="Configuration file")
    parser.add_argument("--dataset", action="append", help="Dataset scope (repeatable, default: all)")
    parser.add_argument("--output", help="Write the JSON run report to this path")

    args = parser.parse_args()

    config_manager = ConfigManager()
    config = config_manager.load_config(args.config)
    setup_logging(config_manager.get_monitoring_config().get("logging"))

    pipeline = ETLPipeline(config)
    report = pipeline.run_pipeline(args.dataset)

    for name, result in report.datasets.items():
        print(f"{name:<20} {result.status:<8} read={result.rows_read} loaded={result.rows_loaded} "
              f"rejected={result.rows_rejected} deduplicated={result.rows_deduplicated}"
              + (f" error={result.error}" if result.error else ""))

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2, default=str)
        print(f"Run report saved to {args.output}")


if __name__ == "__main__":
    main()
