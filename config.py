import os
from dotenv import load_dotenv

if os.path.exists(".env"):
    load_dotenv()

DATABASE_URL       = os.getenv("DATABASE_URL", "sqlite:///./budget_ledger.db")
DB_TIMEOUT_SECONDS = float(os.getenv("DB_TIMEOUT_SECONDS", "10"))

SECRET_KEY        = os.getenv("SECRET_KEY", "change-this-secret-in-production-use-long-random-string")
TOKEN_EXPIRE_DAYS = int(os.getenv("TOKEN_EXPIRE_DAYS", "30"))

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL   = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
