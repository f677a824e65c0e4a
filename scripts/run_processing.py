# Script chạy ETL processing: ingest CSV -> quality checks -> cleansing -> export silver
import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from zenith_dwh.processing.etl_pipeline import ETLPipeline
from zenith_dwh.utils.config import ConfigManager
from zenith_dwh.utils.logging_config import setup_logging
import datetime
import json

# Load config
config_manager = ConfigManager()
config = config_manager.load_config('config/config.yaml')
setup_logging(config_manager.get_monitoring_config().get("logging"))

# Khởi tạo ETL pipeline
etl = ETLPipeline(config)

# Dataset scope từ command line (mặc định: tất cả)
scope = sys.argv[1:] or None

# Chạy ETL pipeline
report = etl.run_pipeline(scope)

for name, result in report.datasets.items():
    print(f"{name:<20} {result.status:<8} loaded={result.rows_loaded}/{result.rows_read}"
          + (f"  [{result.stage}] {result.error}" if result.error else ""))

# Lưu run report
os.makedirs("reports", exist_ok=True)
report_path = f"reports/run_report_{datetime.datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
with open(report_path, "w", encoding="utf-8") as f:
    json.dump(report.to_dict(), f, indent=2, default=str)

print(f"Processing finished with status: {report.status}")
print(f"Run report: {report_path}")
