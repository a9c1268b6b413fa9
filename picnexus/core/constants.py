"""
Central constants file for PicNexus.
All magic numbers, configuration values, and constant strings.
"""

# Application Info
APP_NAME = "PicNexus"
APP_DIR_NAME = ".picnexus"
CONFIG_FILENAME = "picnexus.ini"

# Keyring
KEYRING_SERVICE = "picnexus"
KEYRING_STORE_KEY_USER = "store_key"

# Store documents and keys
SETTINGS_DOCUMENT = "settings.dat"
HISTORY_DOCUMENT = "history.dat"
RETRY_DOCUMENT = "retry.dat"

CONFIG_KEY = "config"
HISTORY_KEY = "uploads"
RETRY_KEY = "failed"

# History is newest-first; oldest entries are dropped past this size
MAX_HISTORY_ITEMS = 500

# Encrypted document format marker
STORE_FORMAT_MARKER = "PNX1:"
AES_GCM_NONCE_SIZE = 12

# Concurrency
DEFAULT_MAX_CONCURRENT = 3
MAX_COMPLETED_QUEUE_ITEMS = 100
DEFAULT_MAX_RETRIES = 3

# Timeouts (seconds)
BACKUP_TIMEOUT = 30
WEBDAV_TIMEOUT = 15
DEFAULT_UPLOAD_TIMEOUT = 120
DEFAULT_INACTIVITY_TIMEOUT = 60

# Retry backoff (seconds)
RETRY_BASE_DELAY = 1.0
RETRY_MAX_DELAY = 30.0

# WebDAV
WEBDAV_HISTORY_FILENAME = "history.json"
DEFAULT_WEBDAV_REMOTE_PATH = "/PicNexus/history.json"

# Link generation
OUTPUT_FORMAT_WEIBO = "weibo"
OUTPUT_FORMAT_R2 = "r2"
OUTPUT_FORMAT_BAIDU = "baidu"
# The link prefix is a hotlink proxy for this host only
PREFIXED_SERVICE = "weibo"
DEFAULT_BAIDU_PREFIX = "https://image.baidu.com/search/down?thumburl="

# Upload result status
RESULT_SUCCESS = "success"
RESULT_FAILED = "failed"

# Outcome status returned by the single-backend path
OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"
OUTCOME_ERROR = "error"

# Queue states
QUEUE_STATE_PENDING = "pending"
QUEUE_STATE_UPLOADING = "uploading"
QUEUE_STATE_COMPLETE = "complete"
QUEUE_STATE_FAILED = "failed"

# HTTP Status Codes
HTTP_OK = 200
HTTP_CREATED = 201
HTTP_NO_CONTENT = 204
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_PAYLOAD_TOO_LARGE = 413
HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVER_ERROR = 500
HTTP_INSUFFICIENT_STORAGE = 507

# Image files accepted by the uploader
IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.gif', '.webp', '.bmp')

# User Agent
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:141.0) Gecko/20100101 Firefox/141.0"
