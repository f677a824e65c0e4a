
# Data Processing Layer - Layer 2

# - Danh mục dataset và ép kiểu
# - Data quality checks (raw / clean)
# - Reference resolvers (territory, subcategory)
# - Cleansing engine và ETL pipeline

# Dữ liệu sau cleansing nằm trong CleanRecordStore (silver).

__version__ = "1.0.0"
__author__ = "Zenith Data Engineering"
