"""s3-tree-clone - Copy a local filesystem tree to S3 with File Gateway compatible metadata."""

__version__ = "1.0.0"

from s3_tree_clone.config import Config
from s3_tree_clone.sync_engine import TreeClone

__all__ = ["TreeClone", "Config", "__version__"]
