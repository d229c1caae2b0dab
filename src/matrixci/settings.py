from __future__ import annotations
import os

MAX_WORKERS = int(os.environ.get("MATRIXCI_MAX_WORKERS", "0")) or None
WORKFLOW = os.environ.get("MATRIXCI_WORKFLOW") or None
DEBUG = os.environ.get("MATRIXCI_DEBUG", "").lower() in ("1", "true", "yes")
