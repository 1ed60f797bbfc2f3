"""Module-level defaults shared across the face engine and the asset cache."""

# The "app version": names the active asset-cache generation and is stamped on exports.
APP_VERSION = "v2"

# Enrollment order (only matters for user guidance).
REQUIRED_ANGLES = ["Straight", "Up", "Down", "Right", "Left"]

# Embedder input: 160x160x3, values in [0, 1].
EMBED_INPUT_SIZE = 160

# Detector acceptance threshold (0.5-0.6 is the usable range).
DETECTOR_MIN_CONFIDENCE = 0.6

MATCH_THRESHOLD = 0.6
RECOGNITION_COOLDOWN_MS = 2000

GALLERY_DIR = "data/gallery"

# Asset cache
CACHE_PREFIX = "family-pwa-"
DATA_CACHE_NAME = "family-pwa-data"
STATIC_TTL_SECONDS = 24 * 60 * 60

# Application shell, relative to the base URL. Install fails if any of these fails.
CRITICAL_ASSETS = [
    "",
    "index.html",
    "app.js",
    "script.js",
    "manifest.json",
]

# Third-party model and library files, fetched best-effort.
OPTIONAL_ASSETS = [
    "https://phoenixuss.github.io/pwa-assets/model/facenet/model.json",
    "https://cdn.jsdelivr.net/npm/@tensorflow/tfjs/dist/tf.min.js",
    "https://cdn.jsdelivr.net/npm/@mediapipe/face_detection/face_detection.js",
    "https://cdn.jsdelivr.net/npm/@mediapipe/camera_utils/camera_utils.js",
]

DYNAMIC_DATA_PATTERN = r"/api/"
MODEL_ASSET_PATTERN = r"(/model/|\.tflite$|\.onnx$|/face_detection/|group\d+-shard\d+of\d+(\.bin)?$)"

# Overlay fonts, first loadable wins. CJK-capable fonts must come before DejaVuSans.
FONT_LIST = [
    "/System/Library/Fonts/STHeiti Medium.ttc",
    "/System/Library/Fonts/Supplemental/STHeiti.ttf",
    "C:\\Windows\\Fonts\\msyh.ttc",
    "C:\\Windows\\Fonts\\simsun.ttc",
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-zenhei.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
]
