"""Shared constants for the timeline store.

For environment-based configuration (storage backend, API URL, retry timing),
use the env module:
    from common.env import env
    base_url = env.api_base_url()
"""

# Keys under which the store persists its two values
ITEMS_STORAGE_KEY = "@timeline_items"
RETRY_QUEUE_STORAGE_KEY = "@retry_queue"

# Prefix marking a locally generated, not yet confirmed item id
TEMP_ID_PREFIX = "temp_"

# Source tag sent with memo uploads when the item does not carry one
DEFAULT_SOURCE = "quick_memory"
DEFAULT_VOICE_TITLE = "Voice Memory"

# Transcription states reported by the voice memo status endpoint
TRANSCRIPTION_COMPLETED = "completed"
TRANSCRIPTION_FAILED = "failed"
