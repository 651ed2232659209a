# =============================================================================
# Data Lake Sync Shared Libraries
# =============================================================================
# This package contains shared libraries for the data lake sync pipeline.
# See individual sub-packages for detailed documentation.
# =============================================================================

"""
Data lake sync shared libraries.

Sub-packages / modules:
- models: Pydantic data models, record variants and settings
- normalization: Arrow type inference for single-record artifacts
- query_rewrite: SQL parameter binding and delete-statement rewriting
- s3_utils: S3 path and artifact key helpers
"""

__version__ = "0.1.0"
