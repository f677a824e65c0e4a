# modun quản lý cấu hình
# load YAML -> cho tất cả module (ingestion, quality, cleansing, views, warehouse)
import os
import re
import logging
from typing import Dict, Any, Optional, List

import yaml

logger = logging.getLogger(__name__)

REQUIRED_SECTIONS = [
    "data_sources",
    "quality",
    "cleansing",
    "storage",
    "monitoring",
]


# configmanager cho pipeline
class ConfigManager:

    # Hàm khởi tạo: thiết lập đường dẫn file cấu hình mặc định và biến lưu cấu hình
    def __init__(self, config_path: str = "config/config.yaml"):
        self.config_path = config_path
        self.config = None

    # Hàm tải cấu hình từ file YAML, có hỗ trợ thay biến môi trường dạng ${VAR}
    def load_config(self, config_path: Optional[str] = None) -> Dict[str, Any]:
        if config_path:
            self.config_path = config_path

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                config_content = self._substitute_env_vars(file.read())
                self.config = yaml.safe_load(config_content) or {}

            logger.info(f"Configuration loaded from {self.config_path}")
            return self.config

        except FileNotFoundError:
            logger.error(f"Configuration file not found: {self.config_path}")
            raise
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration: {e}")
            raise

    # Hàm thay thế biến môi trường trong nội dung YAML (ví dụ ${DB_HOST:localhost})
    def _substitute_env_vars(self, content: str) -> str:
        # ${VAR_NAME} hoặc ${VAR_NAME:default_value}
        pattern = r'\$\{([^}:]+)(?::([^}]*))?\}'

        def replace_env_var(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else ""
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replace_env_var, content)

    # Hàm truy xuất giá trị cấu hình theo key chấm (vd: "quality.sample_size"), có giá trị mặc định
    def get(self, key: str, default: Any = None) -> Any:
        if self.config is None:
            self.load_config()

        value = self.config
        try:
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def get_database_config(self) -> Dict[str, Any]:
        return self.get("storage.database", {})

    def get_monitoring_config(self) -> Dict[str, Any]:
        return self.get("monitoring", {})

    # Hàm kiểm tra file cấu hình đã đủ các mục bắt buộc chưa
    def validate_config(self, required_sections: Optional[List[str]] = None) -> bool:
        if self.config is None:
            logger.error("Configuration not loaded")
            return False

        for section in required_sections or REQUIRED_SECTIONS:
            if section not in self.config:
                logger.error(f"Missing required configuration section: {section}")
                return False

        logger.info("Configuration validation passed")
        return True

    # Hàm lưu cấu hình ra file YAML
    def save_config(self, config: Dict[str, Any], output_path: str):
        try:
            with open(output_path, 'w', encoding='utf-8') as file:
                yaml.dump(config, file, default_flow_style=False, indent=2, sort_keys=False)

            logger.info(f"Configuration saved to {output_path}")

        except OSError as e:
            logger.error(f"Error saving configuration: {e}")
            raise

    # Hàm tạo file mẫu .env.template chứa các biến môi trường mà config.yaml tham chiếu
    def create_env_template(self, output_path: str = ".env.template"):
        env_vars = [
            "# Source extracts",
            "ZENITH_CRM_DIR=datasets/source_crm",
            "ZENITH_ERP_DIR=datasets/source_erp",
            "",
            "# Warehouse",
            "ZENITH_DB_URL=",
            "DB_HOST=localhost",
            "DB_PORT=5432",
            "DB_NAME=zenith_dwh",
            "DB_USER=postgres",
            "DB_PASSWORD=password",
            "",
            "# Logging",
            "LOG_LEVEL=INFO",
        ]

        try:
            with open(output_path, 'w', encoding='utf-8') as file:
                file.write('\n'.join(env_vars) + '\n')

            logger.info(f"Environment template created: {output_path}")

        except OSError as e:
            logger.error(f"Error creating environment template: {e}")
            raise


# Hàm main dùng để test nhanh: load/validate config và tạo file .env mẫu nếu cần
def main():
    import argparse

    parser = argparse.ArgumentParser(description="Configuration Manager")
    parser.add_argument("--config", default="config/config.yaml", help="Configuration file")
    parser.add_argument("--validate", action="store_true", help="Validate configuration")
    parser.add_argument("--create-env", action="store_true", help="Create environment template")

    args = parser.parse_args()

    config_manager = ConfigManager(args.config)
    config_manager.load_config()

    if args.validate:
        if config_manager.validate_config():
            print("Configuration is valid")
        else:
            print("Configuration validation failed")

    if args.create_env:
        config_manager.create_env_template()
        print("Environment template created")

    print(f"CRM source dir: {config_manager.get('data_sources.csv.crm_dir')}")
    print(f"ERP source dir: {config_manager.get('data_sources.csv.erp_dir')}")
    print(f"Warehouse url: {config_manager.get('storage.database.url')}")


if __name__ == "__main__":
    main()
