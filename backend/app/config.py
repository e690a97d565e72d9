"""
Command Gateway - Runtime Settings
Gateway policy knobs and notification settings, read from the environment.
"""
import os

# Policy
ESCALATION_TIMEOUT_MINUTES = int(os.getenv("ESCALATION_TIMEOUT_MINUTES", "60"))
DEFAULT_USER_CREDITS = int(os.getenv("DEFAULT_USER_CREDITS", "100"))
EXECUTION_CREDIT_COST = 1

# Scheduler endpoints
INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "scheduler-internal-key-change-in-production")

# Email notifications - disabled unless SMTP_HOST is set
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASS = os.getenv("SMTP_PASS")
SMTP_FROM = os.getenv("SMTP_FROM") or SMTP_USER or "noreply@commandgateway.local"
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
