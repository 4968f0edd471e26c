"""Application configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Paths (override with env)
DATA_DIR = Path(os.getenv("MEDIABATCH_DATA_DIR", str(BASE_DIR / "data")))
ENGINE_WORK_DIR = Path(os.getenv("ENGINE_WORK_DIR", str(DATA_DIR / "engine")))
HANDLE_DIR = Path(os.getenv("HANDLE_DIR", str(DATA_DIR / "handles")))
BUNDLE_DIR = Path(os.getenv("BUNDLE_DIR", str(DATA_DIR / "bundles")))
ENGINE_WORK_DIR.mkdir(parents=True, exist_ok=True)
HANDLE_DIR.mkdir(parents=True, exist_ok=True)
BUNDLE_DIR.mkdir(parents=True, exist_ok=True)

# Engine binary: a name on PATH or an absolute path
FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")

# Supported formats
IMAGE_OUTPUT_FORMATS = ["jpg", "png", "webp", "gif", "bmp", "tiff", "ico"]
VIDEO_OUTPUT_FORMATS = ["mp4", "webm", "mkv", "avi", "mov", "flv", "wmv"]
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif", ".webp", ".ico", ".avif"}
VIDEO_EXTENSIONS = {".mp4", ".webm", ".mkv", ".avi", ".mov", ".flv", ".wmv", ".m4v"}

# Video codecs (value -> label); "copy" is stream copy without re-encoding
VIDEO_CODECS = {
    "libx264": "H.264 (Standard)",
    "libvpx-vp9": "VP9 (Web/Chrome)",
    "libx265": "H.265 (High Eff)",
    "copy": "Copy (No Re-encode)",
}
DEFAULT_VIDEO_CODEC = "libx264"

# Resolution presets (name -> output height); width follows the source ratio
RESOLUTION_PRESETS = {
    "4k": 2160,
    "1440p": 1440,
    "1080p": 1080,
    "720p": 720,
    "480p": 480,
    "360p": 360,
}

# Fallback dimensions when the probe cannot read the video resolution
DEFAULT_VIDEO_WIDTH = 1920
DEFAULT_VIDEO_HEIGHT = 1080

# Conversion options (env overrides)
DEFAULT_IMAGE_FORMAT = os.getenv("DEFAULT_IMAGE_FORMAT", "webp")
DEFAULT_QUALITY = int(os.getenv("DEFAULT_QUALITY", "100"))
DEFAULT_VIDEO_FORMAT = os.getenv("DEFAULT_VIDEO_FORMAT", "mp4")

# Download names
BUNDLE_DOWNLOAD_NAME = os.getenv("BUNDLE_DOWNLOAD_NAME", "todas_las_imagenes.zip")
VIDEO_DOWNLOAD_STEM = os.getenv("VIDEO_DOWNLOAD_STEM", "video-transformado")

# Database – SQLite by default (session statistics only)
DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
if not DATABASE_URL:
    db_path = DATA_DIR / "mediabatch.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    DATABASE_URL = f"sqlite:///{db_path}"

# Limits (env)
# Images: max count per upload, max size per file (MB)
MAX_IMAGES_PER_UPLOAD = int(os.getenv("MAX_IMAGES_PER_UPLOAD", "50"))
MAX_IMAGE_SIZE_MB = int(os.getenv("MAX_IMAGE_SIZE_MB", "20"))
MAX_IMAGE_SIZE_BYTES = MAX_IMAGE_SIZE_MB * 1024 * 1024
# Videos: one at a time, max size per file (MB)
MAX_VIDEOS_PER_UPLOAD = 1
MAX_VIDEO_SIZE_MB = int(os.getenv("MAX_VIDEO_SIZE_MB", "500"))
MAX_VIDEO_SIZE_BYTES = MAX_VIDEO_SIZE_MB * 1024 * 1024

# Sessions: workspaces idle longer than this (and not converting) are dropped
WORKSPACE_IDLE_MINUTES = int(os.getenv("WORKSPACE_IDLE_MINUTES", "120"))
WORKSPACE_IDLE_SECONDS = WORKSPACE_IDLE_MINUTES * 60

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:3000,http://127.0.0.1:3000"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("mediabatch")
