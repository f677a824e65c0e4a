# Data Storage Layer
#  handles data storage and retrieval
# - Raw / clean record stores trong bộ nhớ
# - Parquet export
# - PostgreSQL warehouse (silver_*, gold_* tables)
__version__ = "1.0.0"
__author__ = "Zenith Data Engineering"
