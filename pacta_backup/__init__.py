from .backup import BackupManager
from .config import BackupEngineConfig

__version__ = "0.3.0"
__author__ = "Pacta Team"
__url__ = "https://github.com/pacta-app/pacta-backup"

__all__ = ["BackupManager", "BackupEngineConfig", "__version__"]
