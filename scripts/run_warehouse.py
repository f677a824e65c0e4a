# Script load dữ liệu silver + gold vào warehouse
import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from zenith_dwh.processing.etl_pipeline import ETLPipeline
from zenith_dwh.presentation.views import PresentationViewBuilder
from zenith_dwh.storage.data_warehouse import ZenithDataWarehouse
from zenith_dwh.utils.config import ConfigManager
from zenith_dwh.utils.logging_config import setup_logging

# Load config
config_manager = ConfigManager()
config = config_manager.load_config('config/config.yaml')
setup_logging(config_manager.get_monitoring_config().get("logging"))

# Ingest + cleansing (full refresh)
etl = ETLPipeline(config)
etl.ingest()
report = etl.run_cleansing()
if report.failed() or report.skipped():
    print(f"[WARN] Datasets not refreshed: {report.failed() + report.skipped()}")

# Dựng presentation views từ clean store
views = PresentationViewBuilder(etl.clean_store).build_all()
print(f"Built views: {', '.join(views)}")

# Ghi silver_* và gold_* vào warehouse
dw = ZenithDataWarehouse(config)
result = dw.publish(etl.clean_store, views)

for table_name, rows in result["tables"].items():
    print(f"[OK] {table_name}: {rows} rows")

print(f"\n[SUCCESS] Published {len(result['tables'])} tables to warehouse!")
