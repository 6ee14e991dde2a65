"""
Runtime settings, read from the environment (a .env file is honoured).
"""
import os
from dotenv import load_dotenv

load_dotenv()

PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Where multipart uploads land; served back under /uploads
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_DONATION_UPLOADS = 6

# Key-value store for listings, carts, wishlists and orders
# auto -> mongo when the database is configured, else json when STORE_PATH is set, else memory
STORE_BACKEND = os.getenv("STORE_BACKEND", "auto").lower()
STORE_PATH = os.getenv("STORE_PATH")

# Pickup serviceability
PINCODE_SERVICE_URL = os.getenv("PINCODE_SERVICE_URL")
PINCODE_TIMEOUT = float(os.getenv("PINCODE_TIMEOUT", 5))
SERVICEABLE_PREFIXES = [p for p in os.getenv("SERVICEABLE_PREFIXES", "5,6,7,8").replace(" ", "").split(",") if p]
