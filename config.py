import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "menumetrics")

JWT_SECRET = os.getenv("JWT_SECRET", "dev_secret_change_me")
JWT_ALG = "HS256"
TOKEN_EXPIRE_MIN = int(os.getenv("TOKEN_EXPIRE_MIN", 60 * 24))  # 1 day
PASSWORD_RESET_EXPIRE_MIN = int(os.getenv("PASSWORD_RESET_EXPIRE_MIN", 60))

# Sole administrator address. Passed into AuthState, never compared inline.
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "owner@restaurent.com")

# Upper bound for a single data-access call made by the dashboard state.
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", 10))

# Dashboard sessions unused for this long are dropped from memory.
SESSION_IDLE_MIN = int(os.getenv("SESSION_IDLE_MIN", TOKEN_EXPIRE_MIN))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
