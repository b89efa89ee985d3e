"""Runtime hot-reload.

- Replacing reload-eligible modules in place
- Entry-module notification
- Source watching for compile-and-reload
"""

from dylink.reload.reloader import ModuleReloader, ReloadResult, ReloadStatus
from dylink.reload.watcher import SourceChange, SourceWatcher

__all__ = [
    "ModuleReloader",
    "ReloadResult",
    "ReloadStatus",
    "SourceChange",
    "SourceWatcher",
]
