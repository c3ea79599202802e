"""
Persistence Service

Uploads generated assets (object storage first, app backend as fallback)
and stores visualization records in PostgreSQL.
"""

from .assets import AssetPersister, PersistedAssets
from .records import RecordStore, VideoRecordStatus, Visualization, build_record
from .uploaders import ObjectStorageUploader, ServerUploader, asset_key

__all__ = [
    "AssetPersister",
    "ObjectStorageUploader",
    "PersistedAssets",
    "RecordStore",
    "ServerUploader",
    "VideoRecordStatus",
    "Visualization",
    "asset_key",
    "build_record",
]
