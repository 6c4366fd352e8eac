from viros.desktop import DesktopController
from viros.persistence import LocalStorage, QuotaExceededError, StorageError
from viros.store import DesktopStore
from viros.terminal import TerminalSession

__all__ = [
    "DesktopController",
    "DesktopStore",
    "LocalStorage",
    "QuotaExceededError",
    "StorageError",
    "TerminalSession",
]
