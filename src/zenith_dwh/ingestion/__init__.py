
# Data Ingestion Layer - layer 1

# Đọc 9 file CSV (CRM + ERP) vào RawRecordStore:
# - validate dòng bằng Cerberus
# - file lỗi -> dataset unavailable
# - snapshot Parquet tuỳ chọn

__version__ = "1.0.0"
__author__ = "Zenith Data Engineering"
