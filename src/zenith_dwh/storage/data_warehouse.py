# Data Warehouse Module
# Lưu lớp silver (clean datasets) và gold (presentation views) vào database qua SQLAlchemy
# PostgreSQL (psycopg2) là mặc định; storage.database.url cho phép dùng DB khác (vd SQLite khi test)

import pandas as pd
from sqlalchemy import create_engine, inspect, text, select, func, table
from sqlalchemy.engine import Connection
from typing import Dict, Any, List, Optional
from datetime import datetime
from urllib.parse import quote_plus

from ..utils.logging_config import get_logger
from .record_store import CleanRecordStore

logger = get_logger(__name__)

SILVER_PREFIX = "silver_"
GOLD_PREFIX = "gold_"


class DataWarehouse:
    # Xử lý kết nối và thao tác với data warehouse

    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}
        self.db_config = (self.config.get("storage", {}) or {}).get("database", {}) or {}
        self.connection_string = self._build_connection_string()
        self.engine = create_engine(self.connection_string)
        self.is_postgres = self.engine.dialect.name == "postgresql"
        # schema chỉ có nghĩa với PostgreSQL
        self.schema = (self.db_config.get("postgresql", {}) or {}).get("schema", "public") if self.is_postgres else None

    def _build_connection_string(self) -> str:
        if self.db_config.get("url"):
            return self.db_config["url"]

        # URL encode password để xử lý ký tự đặc biệt như @, #, %
        pg_config = self.db_config.get("postgresql", {}) or {}
        username = quote_plus(str(pg_config.get('username', 'postgres')))
        password = quote_plus(str(pg_config.get('password', '')))
        host = pg_config.get('host', 'localhost')
        port = pg_config.get('port', 5432)
        database = pg_config.get('database', 'zenith_dwh')

        return f"postgresql+psycopg2://{username}:{password}@{host}:{port}/{database}"

    def _qualified(self, table_name: str) -> str:
        return f"{self.schema}.{table_name}" if self.schema else table_name

    def _write(self, conn: Connection, df: pd.DataFrame, table_name: str, if_exists: str, chunksize: int) -> None:
        df.to_sql(
            table_name,
            conn,
            schema=self.schema,
            if_exists=if_exists,
            index=False,
            chunksize=chunksize,
            method='multi' if self.is_postgres else None
        )

    def load_data(
        self,
        df: pd.DataFrame,
        table_name: str,
        if_exists: str = "replace",
        chunksize: int = 10000
    ) -> bool:
        # Load DataFrame vào bảng trong một transaction (lỗi -> rollback, bảng cũ giữ nguyên)
        try:
            with self.engine.begin() as conn:
                self._write(conn, df, table_name, if_exists, chunksize)

            logger.info(f"Successfully loaded {len(df)} rows to {self._qualified(table_name)}")
            return True

        except Exception as e:
            logger.error(f"Failed to load data to {table_name}: {str(e)}")
            raise

    def query_data(
        self,
        query: str,
        params: Optional[Dict[str, Any]] = None
    ) -> pd.DataFrame:
        # Thực thi query SQL và trả về DataFrame
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(query), params or {})
                df = pd.DataFrame(result.fetchall(), columns=list(result.keys()))
                logger.info(f"Query executed successfully, returned {len(df)} rows")
                return df

        except Exception as e:
            logger.error(f"Query failed: {str(e)}")
            raise

    def list_tables(self) -> List[str]:
        return sorted(inspect(self.engine).get_table_names(schema=self.schema))

    def get_table_info(self, table_name: str) -> Dict[str, Any]:
        # Lấy metadata của bảng: columns, row_count, column_count
        try:
            columns = inspect(self.engine).get_columns(table_name, schema=self.schema)
            with self.engine.connect() as conn:
                row_count = conn.execute(
                    select(func.count()).select_from(table(table_name, schema=self.schema))
                ).scalar_one()

            return {
                "table_name": self._qualified(table_name),
                "columns": [
                    {"column_name": c["name"], "data_type": str(c["type"]), "is_nullable": c.get("nullable", True)}
                    for c in columns
                ],
                "row_count": int(row_count),
                "column_count": len(columns)
            }

        except Exception as e:
            logger.error(f"Failed to get table info: {str(e)}")
            raise


class ZenithDataWarehouse(DataWarehouse):
    # Ghi silver_<dataset> và gold_<view>; toàn bộ lần publish nằm trong một transaction

    def publish(
        self,
        clean_store: CleanRecordStore,
        views: Optional[Dict[str, pd.DataFrame]] = None,
        chunksize: int = 10000
    ) -> Dict[str, Any]:
        tables: Dict[str, int] = {}
        try:
            snapshot = clean_store.snapshot(clean_store.datasets())
            with self.engine.begin() as conn:
                for dataset, df in snapshot.items():
                    name = f"{SILVER_PREFIX}{dataset}"
                    self._write(conn, df, name, "replace", chunksize)
                    tables[name] = len(df)
                for view, df in (views or {}).items():
                    name = f"{GOLD_PREFIX}{view}"
                    self._write(conn, df, name, "replace", chunksize)
                    tables[name] = len(df)

            logger.info("Warehouse publish completed", tables=len(tables))
            return {
                "timestamp": datetime.now().isoformat(),
                "tables": tables,
                "status": "success"
            }

        except Exception as e:
            logger.error(f"Warehouse publish failed: {str(e)}")
            raise


def main():
    import argparse
    import json

    from ..utils.config import ConfigManager
    from ..utils.logging_config import setup_logging
    from ..processing.etl_pipeline import ETLPipeline
    from ..presentation.views import PresentationViewBuilder

    parser = argparse.ArgumentParser(description="Publish clean datasets and views to the warehouse")
    parser.add_argument("--config", default="config/config.yaml", help="Configuration file")

    args = parser.parse_args()

    config_manager = ConfigManager()
    config = config_manager.load_config(args.config)
    setup_logging(config_manager.get_monitoring_config().get("logging"))

    pipeline = ETLPipeline(config)
    pipeline.ingest()
    pipeline.run_cleansing()
    views = PresentationViewBuilder(pipeline.clean_store).build_all()

    result = ZenithDataWarehouse(config).publish(pipeline.clean_store, views)
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
