# Utilities: config (YAML), logging (structlog), row validation (Cerberus)
__version__ = "1.0.0"
__author__ = "Zenith Data Engineering"
