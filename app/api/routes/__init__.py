from . import backups, downloads

__all__ = ["backups", "downloads"]
