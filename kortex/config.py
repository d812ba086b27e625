"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("KORTEX_DATA_DIR", str(BASE_DIR / "data")))
INDEX_DIR = DATA_DIR / "indexes"

# Ensure data directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
INDEX_DIR.mkdir(exist_ok=True)

# Groq (answer generation, OpenAI-compatible API)
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
GROQ_BASE_URL = os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1")
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama-3.3-70b-versatile")
CHAT_FALLBACK_MODEL = os.getenv("CHAT_FALLBACK_MODEL", "llama-3.1-8b-instant")
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.1"))  # strict factual mode
CHAT_MAX_TOKENS = int(os.getenv("CHAT_MAX_TOKENS", "1024"))

# Cloudflare Workers AI (embeddings)
CLOUDFLARE_ACCOUNT_ID = os.getenv("CLOUDFLARE_ACCOUNT_ID", "")
CLOUDFLARE_API_TOKEN = os.getenv("CLOUDFLARE_API_TOKEN", "")
CLOUDFLARE_BASE_URL = os.getenv(
    "CLOUDFLARE_BASE_URL", "https://api.cloudflare.com/client/v4/accounts"
)
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "@cf/baai/bge-base-en-v1.5")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "768"))

# Outbound HTTP
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "60.0"))

# Chunking (token estimate = ceil(chars / 4), kept for compatibility with stored chunks)
CHUNK_MAX_TOKENS = int(os.getenv("CHUNK_MAX_TOKENS", "600"))
CHUNK_OVERLAP_TOKENS = int(os.getenv("CHUNK_OVERLAP_TOKENS", "100"))
EMBEDDING_PROGRESS_INTERVAL = int(os.getenv("EMBEDDING_PROGRESS_INTERVAL", "10"))

# Retrieval and confidence gating (independent values that happen to share a default)
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.5"))
CONFIDENCE_FLOOR = float(os.getenv("CONFIDENCE_FLOOR", "0.5"))
MAX_RETRIEVED_CHUNKS = int(os.getenv("MAX_RETRIEVED_CHUNKS", "5"))

# Uploads
ALLOWED_CONTENT_TYPES = ("application/pdf",)
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

# Database
DB_PATH = DATA_DIR / "kortex.sqlite"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
