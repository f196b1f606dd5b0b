"""SIA academic sync domain exports."""

from .jobs import SiaSyncRunner, schedule_sia_sync
from .models import SyncStatus
from .service import SiaSyncService

__all__ = [
	"SiaSyncRunner",
	"SiaSyncService",
	"SyncStatus",
	"schedule_sia_sync",
]
