# thiết lập nhật ký cho cả quy trình
# dùng cho ingestion, quality checks, cleansing, views, warehouse
import logging
import sys
import json
from pathlib import Path
from typing import Dict, Any, Optional

import structlog


# Hàm thiết lập logging
def setup_logging(config: Optional[Dict[str, Any]] = None) -> None:
    if config is None:
        config = {
            "level": "INFO",
            "format": "json",
            "file": "logs/pipeline.log"
        }

    # structlog -> stdlib, render ở formatter để console và file giống nhau
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    log_level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    # Lấy format từ config, nếu không có thì sử dụng json
    log_format = config.get("format", "json")

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    formatter = structlog.stdlib.ProcessorFormatter(processor=renderer)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler (bỏ qua nếu file: null)
    log_file = config.get("file", "logs/pipeline.log")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    # Trả về logger dạng structured (structlog) theo tên "name"
    return structlog.get_logger(name)


class PipelineLogger:
    # Logger tuỳ biến cho các hoạt động của pipeline (ingestion, quality, cleansing, ...)

    def __init__(self, name: str):
        self.logger = get_logger(name)

    def log_ingestion_start(self, source: str, file_path: str):
        self.logger.info(
            "Data ingestion started",
            source=source,
            file_path=file_path,
            operation="ingestion_start"
        )

    def log_ingestion_complete(self, source: str, rows: int, duration: float):
        self.logger.info(
            "Data ingestion completed",
            source=source,
            rows=rows,
            duration_seconds=duration,
            operation="ingestion_complete"
        )

    def log_processing_start(self, stage: str, rows: int):
        self.logger.info(
            "Data processing started",
            stage=stage,
            input_rows=rows,
            operation="processing_start"
        )

    def log_processing_complete(self, stage: str, input_rows: int, output_rows: int, duration: float):
        self.logger.info(
            "Data processing completed",
            stage=stage,
            input_rows=input_rows,
            output_rows=output_rows,
            duration_seconds=duration,
            operation="processing_complete"
        )

    def log_error(self, operation: str, error: str, context: Dict[str, Any] = None):
        # Ghi log lỗi kèm bối cảnh (operation, thông tin lỗi, ngữ cảnh)
        self.logger.error(
            "Operation failed",
            operation=operation,
            error=error,
            context=context or {},
            operation_type="error"
        )

    def log_data_quality_issue(self, check_name: str, issue: str, affected_rows: int):
        # Ghi log vấn đề chất lượng dữ liệu (tên check, mô tả, số dòng ảnh hưởng)
        self.logger.warning(
            "Data quality issue detected",
            check_name=check_name,
            issue=issue,
            affected_rows=affected_rows,
            operation="data_quality_issue"
        )


# Logger chuyên cho metrics (giá trị, counter, timing)
class MetricsLogger:

    def __init__(self, name: str):
        self.logger = get_logger(name)

    def log_metric(self, metric_name: str, value: float, tags: Dict[str, str] = None):
        self.logger.info(
            "Metric recorded",
            metric_name=metric_name,
            value=value,
            tags=tags or {},
            operation="metric_log"
        )

    def log_counter(self, counter_name: str, increment: int = 1, tags: Dict[str, str] = None):
        self.logger.info(
            "Counter incremented",
            counter_name=counter_name,
            increment=increment,
            tags=tags or {},
            operation="counter_log"
        )

    def log_timing(self, operation: str, duration: float, tags: Dict[str, str] = None):
        # Ghi log thời gian thực thi cho một stage
        self.logger.info(
            "Timing recorded",
            timed_operation=operation,
            duration_seconds=duration,
            tags=tags or {},
            operation="timing_log"
        )


def main():
    # Hàm main để test nhanh cấu hình logging (console/file) và các logger tiện ích
    import argparse

    parser = argparse.ArgumentParser(description="Logging Configuration")
    parser.add_argument("--config", help="Logging configuration file (JSON)")
    parser.add_argument("--test", action="store_true", help="Test logging")

    args = parser.parse_args()

    if args.config:
        with open(args.config, 'r', encoding='utf-8') as f:
            setup_logging(json.load(f))
    else:
        setup_logging()

    if args.test:
        pipeline_logger = PipelineLogger("test_pipeline")
        pipeline_logger.log_ingestion_start("crm", "source_crm/crm_customer_info.csv")
        pipeline_logger.log_ingestion_complete("crm", 1000, 0.5)
        pipeline_logger.log_data_quality_issue("A2a", "duplicate customer_id", 3)

        metrics_logger = MetricsLogger("test_metrics")
        metrics_logger.log_metric("rows_loaded", 1000, {"dataset": "crm_customer_info"})
        metrics_logger.log_timing("cleanse", 1.23)


if __name__ == "__main__":
    main()
