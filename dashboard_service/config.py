import os
from dotenv import load_dotenv

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
# Empty means "use the database named in the URI" (or "test" if there is none)
DATABASE_NAME = os.getenv("DATABASE_NAME", "")

SERVER_SELECTION_TIMEOUT_MS = int(os.getenv("SERVER_SELECTION_TIMEOUT_MS", "5000"))

# ---- Dashboard defaults ----
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "100"))
HIDDEN_DATABASES = [
    name.strip()
    for name in os.getenv("HIDDEN_DATABASES", "admin,local,config").split(",")
    if name.strip()
]

# ---- LLM / AI Integration ----
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

# Number of documents shown to the model as structure examples
AI_SAMPLE_SIZE = int(os.getenv("AI_SAMPLE_SIZE", "5"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
