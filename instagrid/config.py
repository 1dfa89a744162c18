# config.py
"""
Application configuration constants for instagrid
"""

# Grid defaults
MAX_IMAGES = 9

# Output encoding (JPEG quality, 1-100)
PREVIEW_QUALITY = 85   # interactive previews favour latency
EXPORT_QUALITY = 95    # downloads favour fidelity

# Crop anchor dragging
CROP_DEBOUNCE_MS = 80

# Palette extraction
PALETTE_COLOR_COUNT = 6
PALETTE_SAMPLE_STRIDE = 5  # sample every 5th pixel

# Background fill
DEFAULT_BACKGROUND_HEX = "#6b7280"
GRADIENT_DARKEN_STEP = 40

# Render execution
RENDER_WORKERS = 4

# Supported image formats
SUPPORTED_IMAGE_FORMATS = ['png', 'jpg', 'jpeg', 'bmp', 'webp', 'gif', 'tiff']
SUPPORTED_EXTENSIONS = {f".{ext}" for ext in SUPPORTED_IMAGE_FORMATS}
EXPORT_EXTENSIONS = {".jpg", ".zip"}

# Logging
LOGGER_NAME = "instagrid"
LOG_FILENAME = "instagrid.log"
LOG_PATH_ENV = "INSTAGRID_LOG_PATH"
LOG_MAX_BYTES = 1_048_576
LOG_BACKUP_COUNT = 5

# Export naming
SINGLE_EXPORT_PREFIX = "instagram"
GRID_ARCHIVE_PREFIX = "instagram-grid"

# Caption suggestions (external multimodal API)
CAPTION_API_URL = "https://api.anthropic.com/v1/messages"
CAPTION_API_VERSION = "2023-06-01"
CAPTION_API_KEY_ENV = "ANTHROPIC_API_KEY"
CAPTION_MODEL = "claude-haiku-4-5-20251001"
CAPTION_MAX_TOKENS = 1024
CAPTION_TIMEOUT_SECS = 60
