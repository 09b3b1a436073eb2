import os

class Config:
    # FastAPI backend, usually http://127.0.0.1:8000 in development
    API_BASE_URL = os.getenv("API_BASE_URL", "http://127.0.0.1:8000")
    API_TIMEOUT_SECONDS = float(os.getenv("API_TIMEOUT_SECONDS", "20"))
    DASHBOARD_TOKEN = os.getenv("DASHBOARD_TOKEN", "")
