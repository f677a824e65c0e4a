# Script chạy data quality checks trên dữ liệu raw (bronze)
import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from zenith_dwh.processing.etl_pipeline import ETLPipeline
from zenith_dwh.processing.data_quality import render_report
from zenith_dwh.utils.config import ConfigManager
from zenith_dwh.utils.logging_config import setup_logging
import datetime
import json

# Load config
config_manager = ConfigManager()
config = config_manager.load_config('config/config.yaml')
setup_logging(config_manager.get_monitoring_config().get("logging"))

etl = ETLPipeline(config)
etl.ingest()

# Dataset scope từ command line (mặc định: tất cả + cross_source)
scope = sys.argv[1:] or None
report = etl.run_quality_checks(scope)

print(render_report(report))

os.makedirs("reports", exist_ok=True)
report_path = f"reports/quality_report_{datetime.datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
with open(report_path, "w", encoding="utf-8") as f:
    json.dump(report.to_dict(), f, indent=2, default=str)

summary = report.summary()
print(f"\nChecks: {summary['total_checks']}, with findings: {summary['checks_with_findings']}, "
      f"failed to run: {summary['checks_failed_to_run']}")
print(f"Quality report: {report_path}")
