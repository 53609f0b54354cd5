"""Application-wide constants."""

# Session status values
class SessionStatus:
    """Session status constants."""
    RECORDING = "recording"
    COMPLETE = "complete"


# Schema version written into every new session document
SESSION_SCHEMA_VERSION = "1.0.0"

# On-disk naming for the session store
SESSION_FILE_SUFFIX = ".json"
TEMP_FILE_SUFFIX = ".json.tmp"
BACKUP_FILE_SUFFIX = ".json.bak"

# Artifact naming
VIDEO_FILE_SUFFIX = ".mp4"
THUMBNAIL_FILE_SUFFIX = ".png"
RECORDING_FILE_SUFFIX = ".webm"
PARTIAL_PREFIX = "."
PARTIAL_SUFFIX = ".part"

# Metadata keys owned by the store; client patches never overwrite them
STORE_OWNED_METADATA_KEYS = ("recordedAt", "lastUpdated", "status", "version")

# Metadata keys that keep the value from the first write
IMMUTABLE_METADATA_KEYS = ("userAgent", "viewport")

# Metadata keys checked in strict validation mode
REQUIRED_METADATA_KEYS = ("timestamp", "userAgent", "url")
