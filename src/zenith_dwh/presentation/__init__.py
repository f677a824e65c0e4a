
# Presentation Layer - Layer 3

# Dimension và fact views dựng từ clean store:
# dim_customer, dim_product, dim_store, fact_sales, fact_returns

__version__ = "1.0.0"
__author__ = "Zenith Data Engineering"
