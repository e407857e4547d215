"""
Application configuration and constants
"""
import os
from pathlib import Path
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

# Temporary upload directory (relay worker moves files out of here)
UPLOAD_DIR = Path(os.environ.get('UPLOAD_DIR', str(ROOT_DIR / 'uploads')))
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

# JWT configuration
SECRET_KEY = os.environ['JWT_SECRET_KEY']
ALGORITHM = 'HS256'
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7

# Upload token signing key
TOKEN_SECRET = os.environ.get('TOKEN_SECRET') or SECRET_KEY

# Admin credentials
ADMIN_USERNAME = os.environ.get('ADMIN_USERNAME', 'admin')
ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', 'admin123')

# Persistence backend: "sql" or "mongo"
DB_TYPE = os.environ.get('DB_TYPE', 'sql').lower()
DATABASE_URL = os.environ.get('DATABASE_URL', f"sqlite+aiosqlite:///{ROOT_DIR / 'guestdrop.db'}")
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'guestdrop')

FRONTEND_URL = os.environ.get('FRONTEND_URL', 'http://localhost:3001')
CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

# User lookup cache
USER_CACHE_TTL = int(os.environ.get('USER_CACHE_TTL', 5 * 60))

# ============================================
# UPLOAD ADMISSION
# ============================================

MAX_FILE_SIZE = int(os.environ.get('MAX_FILE_SIZE', 10 * 1024 * 1024))  # 10 MiB
MAX_FILES_PER_REQUEST = int(os.environ.get('MAX_FILES_PER_REQUEST', 50))

ALLOWED_EXTENSIONS = ['jpeg', 'jpg', 'png', 'gif', 'bmp', 'webp']
ALLOWED_MIME_TYPES = [
    'image/jpeg',
    'image/jpg',
    'image/png',
    'image/gif',
    'image/bmp',
    'image/webp',
]

# Token creation limits
MAX_BULK_TOKENS = 10
DEFAULT_TOKEN_NAME = 'Photo Collection'

# ============================================
# RELAY WORKER
# ============================================

RELAY_INTERVAL = int(os.environ.get('RELAY_INTERVAL', 5 * 60))  # seconds
RELAY_FILE_TIMEOUT = float(os.environ.get('RELAY_FILE_TIMEOUT', 120))
RELAY_MAX_ATTEMPTS = int(os.environ.get('RELAY_MAX_ATTEMPTS', 0))  # 0 = unlimited
RELAY_ENABLED = os.environ.get('RELAY_ENABLED', 'true').lower() == 'true'

# Durable storage backend: "drive" or "bucket"
DURABLE_BACKEND = os.environ.get('DURABLE_BACKEND', 'drive').lower()
DRIVE_FOLDER_NAME = os.environ.get('DRIVE_FOLDER_NAME', 'Guest Uploads')

# Google Drive OAuth
GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID', '')
GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET', '')
GOOGLE_DRIVE_REFRESH_TOKEN = os.environ.get('GOOGLE_DRIVE_REFRESH_TOKEN', '')
GOOGLE_TOKEN_URI = 'https://oauth2.googleapis.com/token'
GOOGLE_DRIVE_SCOPES = ['https://www.googleapis.com/auth/drive.file']

# S3-compatible bucket (GCS interoperability, R2, S3)
BUCKET_ACCESS_KEY_ID = os.environ.get('BUCKET_ACCESS_KEY_ID', '')
BUCKET_SECRET_ACCESS_KEY = os.environ.get('BUCKET_SECRET_ACCESS_KEY', '')
BUCKET_ENDPOINT_URL = os.environ.get('BUCKET_ENDPOINT_URL', 'https://storage.googleapis.com')
BUCKET_REGION = os.environ.get('BUCKET_REGION', 'auto')
BUCKET_NAME = os.environ.get('BUCKET_NAME', 'guest-uploads')

# ============================================
# SUBSCRIPTION PLANS
# ============================================

GB = 1024 * 1024 * 1024

PLAN_FREE_TRIAL = "Free Trial"
PLAN_PHOTO = "Photo Plan"
PLAN_MEDIA = "Media Plan"

DEFAULT_PLANS = [
    {
        "name": PLAN_FREE_TRIAL,
        "description": "10 photos upload with 7 days validity",
        "price": 0.0,
        "max_storage_bytes": 1 * GB,
        "max_files": 10,
        "validity_days": 7,
        "is_trial": True,
    },
    {
        "name": PLAN_PHOTO,
        "description": "Up to 5GB photos with 30 days validity",
        "price": 9.99,
        "max_storage_bytes": 5 * GB,
        "max_files": None,
        "validity_days": 30,
        "is_trial": False,
    },
    {
        "name": PLAN_MEDIA,
        "description": "Up to 15GB photos and media with 180 days validity",
        "price": 29.99,
        "max_storage_bytes": 15 * GB,
        "max_files": None,
        "validity_days": 180,
        "is_trial": False,
    },
]
