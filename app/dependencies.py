"""FastAPI dependencies for shared services."""

from typing import Callable

from app.services.blob_store import BlobStore, LocalBlobStore
from app.services.ledger import RunLedger
from app.worker import launch_run


def get_ledger() -> RunLedger:
    return RunLedger()


def get_blob_store() -> BlobStore:
    return LocalBlobStore()


def get_launcher() -> Callable[..., object]:
    return launch_run
