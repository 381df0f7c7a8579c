"""
Centralized constants for Batch OCR.
All magic numbers and literal defaults live here.
"""

# ===========================================
# BATCH JOBS
# ===========================================
BATCH_CHUNK_SIZE = 50                 # items dispatched per chunk
BATCH_RETRY_COUNT = 2                 # retries per failed item
BATCH_OVERWRITE_MODE = 'skip'         # skip | overwrite | suffix
BATCH_OUTPUT_FORMATS = ['json', 'txt']
BATCH_MAX_QUEUE_SIZE = 1000           # max items per job

# ===========================================
# DRIVER LOOP
# ===========================================
BATCH_PAUSE_POLL_INTERVAL = 1.0       # seconds between checks while paused
BATCH_CHUNK_DELAY = 0.01              # seconds yielded between chunks

# ===========================================
# RESULT FILES
# ===========================================
RESULT_FILE_SUFFIX = '_ocr_results'
RESULT_FILE_FORMAT = 'image-manipulator-v2.0'
RESULT_FILE_VERSION = '2.0'
RESULT_GENERATED_BY = 'Image Manipulator Batch OCR'
SUPPORTED_OUTPUT_FORMATS = ('json', 'txt')
SAVE_RETRY_DELAYS = (0.2, 0.4, 0.6)   # seconds, one per attempt
SAVE_RETRYABLE_ERRNOS = ('EBUSY', 'EACCES')

# ===========================================
# VISION OCR
# ===========================================
OCR_BASE_URL = 'https://openrouter.ai/api/v1'
OCR_DEFAULT_MODEL = 'openai/gpt-4o-mini'
OCR_TIMEOUT_SECONDS = 30
OCR_MAX_RETRIES = 3
OCR_MAX_TOKENS = 2000
OCR_TEMPERATURE = 0.1
OCR_RETRY_BASE_DELAY = 1.0            # seconds, doubled per attempt
OCR_HTTP_REFERER = 'https://image-manipulator.local'
OCR_APP_TITLE = 'Image Manipulator OCR Processing'

# ===========================================
# API / SERVER
# ===========================================
SSE_HEARTBEAT_SECONDS = 30
SERVER_HOST = '0.0.0.0'
SERVER_PORT = 3001

# ===========================================
# LOGGING
# ===========================================
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE = 'logs/batch_ocr.log'
LOG_MAX_SIZE_MB = 10
LOG_BACKUP_COUNT = 5
