from __future__ import annotations
import os

CACHE_DIR = os.environ.get("RELAYCI_CACHE_DIR", ".relayci/cache")
WORK_DIR = os.environ.get("RELAYCI_WORK_DIR", ".relayci/work")
CACHE_KEEP = int(os.environ.get("RELAYCI_CACHE_KEEP", "5"))
MAX_WORKERS = int(os.environ["RELAYCI_MAX_WORKERS"]) if os.environ.get("RELAYCI_MAX_WORKERS") else None
WORKFLOW = os.environ.get("RELAYCI_WORKFLOW")
