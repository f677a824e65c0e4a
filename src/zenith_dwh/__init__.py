
# Zenith Global DWH - batch data integration cho 9 dataset CRM / ERP

# - ingestion: đọc CSV nguồn vào raw store (bronze)
# - processing: quality checks, reference resolvers, cleansing (silver)
# - presentation: dimension / fact views (gold)
# - storage: record stores và warehouse (SQLAlchemy)

__version__ = "1.0.0"
__author__ = "Zenith Data Engineering"
