# Mô-đun kiểm tra dữ liệu đầu vào
# Xác thực từng dòng CSV (đọc dạng text) bằng Cerberus trước khi ép kiểu:
# cột int / decimal / date phải đúng định dạng khi có giá trị.

import json
import pandas as pd
from typing import Dict, Any, List
import logging
from cerberus import Validator

from ..processing.datasets import DatasetSpec, INT, DECIMAL, DATE, get_dataset

logger = logging.getLogger(__name__)

LEXICAL_PATTERNS = {
    INT: r"\s*([+-]?\d+)?\s*",
    DECIMAL: r"\s*([+-]?(\d+(\.\d*)?|\.\d+))?\s*",
    DATE: r"\s*(\d{4}-\d{2}-\d{2}( \d{2}:\d{2}(:\d{2}(\.\d+)?)?)?)?\s*",
}


def build_schema(spec: DatasetSpec) -> Dict[str, Any]:
    # Schema Cerberus cho một dataset; text không có luật riêng
    schema: Dict[str, Any] = {}
    for f in spec.fields:
        rule: Dict[str, Any] = {"type": "string", "nullable": True, "required": f.required}
        if f.kind in LEXICAL_PATTERNS:
            rule["regex"] = LEXICAL_PATTERNS[f.kind]
        schema[f.name] = rule
    return schema


class DataValidator:
    # Bộ xác thực dữ liệu cho các file nguồn CRM/ERP

    def __init__(self):
        # Khởi tạo validator (cerberus) và danh sách lỗi
        self.validator = Validator()
        self.validator.allow_unknown = True
        self.validation_errors = []

    def validate_dataframe(self, df: pd.DataFrame, schema: Dict[str, Any], max_reported: int = 20) -> Dict[str, Any]:
        # Xác thực DataFrame theo schema (type, required, regex)
        try:
            # chỉ validate các cột có luật; null của pandas -> None cho Cerberus
            columns = [c for c in schema if c in df.columns]
            subset = df[columns].astype(object)
            records = subset.where(subset.notna(), None).to_dict('records')

            invalid_records = []
            for i, record in enumerate(records):
                if not self.validator.validate(record, schema):
                    invalid_records.append({
                        'row': i,  # vị trí dòng trong file (không tính header)
                        'data': record,
                        'errors': self.validator.errors
                    })

            total_records = len(records)
            invalid_count = len(invalid_records)
            valid_count = total_records - invalid_count
            validation_rate = valid_count / total_records if total_records > 0 else 1.0

            result = {
                'is_valid': invalid_count == 0,
                'total_records': total_records,
                'valid_records': valid_count,
                'invalid_records': invalid_count,
                'validation_rate': validation_rate,
                'errors': [record['errors'] for record in invalid_records[:max_reported]],
                'invalid_data': invalid_records[:max_reported]
            }
            self.validation_errors = result['errors']

            if invalid_count > 0:
                logger.warning(f"Data validation found {invalid_count} invalid records out of {total_records}")
            else:
                logger.info(f"Data validation passed: {valid_count} records validated")

            return result

        except Exception as e:
            logger.error(f"Data validation failed: {str(e)}")
            return {
                'is_valid': False,
                'error': str(e),
                'total_records': 0,
                'valid_records': 0,
                'invalid_records': 0,
                'validation_rate': 0.0,
                'errors': [str(e)]
            }

    def validate_data_completeness(self, df: pd.DataFrame, required_columns: List[str]) -> Dict[str, Any]:
        # Kiểm tra đủ cột bắt buộc; giá trị null trong cột là việc của quality check, chỉ đếm để báo cáo
        completeness_errors = []
        missing_values = {}

        missing_columns = [col for col in required_columns if col not in df.columns]
        if missing_columns:
            completeness_errors.append(f"Missing required columns: {missing_columns}")

        for col in required_columns:
            if col in df.columns:
                missing_values[col] = int(df[col].isnull().sum())

        return {
            'is_valid': len(completeness_errors) == 0,
            'errors': completeness_errors,
            'error_count': len(completeness_errors),
            'missing_values': missing_values
        }


def main():
    # Hàm main để test nhanh một file CSV theo schema của dataset
    import argparse

    parser = argparse.ArgumentParser(description="Data Validation")
    parser.add_argument("--data", required=True, help="Path to CSV file")
    parser.add_argument("--dataset", required=True, help="Dataset name, e.g. crm_sales_order")

    args = parser.parse_args()

    spec = get_dataset(args.dataset)
    df = pd.read_csv(args.data, dtype=str, keep_default_na=False, na_values=[""])

    validator = DataValidator()
    completeness_result = validator.validate_data_completeness(df, spec.required_columns)
    print(f"Completeness validation: {json.dumps(completeness_result, indent=2)}")

    result = validator.validate_dataframe(df, build_schema(spec))
    print(f"Schema validation: {json.dumps(result, indent=2, default=str)}")


if __name__ == "__main__":
    main()
