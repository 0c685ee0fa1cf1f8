from .config import EndpointConfig, SyncConfig, load_config
from .coordinator import SyncContext, UploadScheduler, run_sync
from .models import ControlWindow, FileUnit, SyncSummary, UnitStatus
from .packer import Pack, Packer
from .scanner import DirectoryCrawler, normalize_path
from .tracker import StateIndex
from .uploader import DirectoryCreationCache, UploadWorker

__version__ = "0.1.0"

__all__ = [
    "EndpointConfig",
    "SyncConfig",
    "load_config",
    "SyncContext",
    "UploadScheduler",
    "run_sync",
    "ControlWindow",
    "FileUnit",
    "SyncSummary",
    "UnitStatus",
    "Pack",
    "Packer",
    "DirectoryCrawler",
    "normalize_path",
    "StateIndex",
    "DirectoryCreationCache",
    "UploadWorker",
]
