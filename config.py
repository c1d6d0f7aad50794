"""
Configuration Module
Reads settings from the environment (and a local .env file) and sets up logging.
"""

import os
import logging
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration class."""

    # Server settings
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", 8000))
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    # Realtime database settings
    STORE_URL = os.getenv(
        "FIREBASE_DB_URL",
        "https://aerovant-monitoring-default-rtdb.asia-southeast1.firebasedatabase.app",
    )
    STORE_AUTH = os.getenv("FIREBASE_AUTH")
    REPORTS_PATH = os.getenv("REPORTS_PATH", "citizen_reports")
    READINGS_PATH = os.getenv("READINGS_PATH", "aerovant_readings")

    # Request behaviour
    REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", 10))
    READ_RETRIES = int(os.getenv("READ_RETRIES", 3))
    RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", 1.0))
    APPEND_ATTEMPTS = int(os.getenv("APPEND_ATTEMPTS", 5))

    # Monitoring station (USTP campus, Cagayan de Oro)
    SENSOR_LATITUDE = float(os.getenv("SENSOR_LATITUDE", 8.486071))
    SENSOR_LONGITUDE = float(os.getenv("SENSOR_LONGITUDE", 124.656805))
    SENSOR_NAME = os.getenv("SENSOR_NAME", "USTP Campus")

    # Proximity defaults
    CITIZEN_RADIUS_KM = float(os.getenv("CITIZEN_RADIUS_KM", 5))
    NEARBY_RADIUS_KM = float(os.getenv("NEARBY_RADIUS_KM", 10))

    # Reverse geocoding
    GEOCODER_URL = os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org/reverse")
    GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "AEROVANT-App/1.0 (Air Quality Monitoring)")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE")


def configure_logging(level: Optional[str] = None):
    """Configure root logging once for the process."""
    handlers = [logging.StreamHandler()]
    if Config.LOG_FILE:
        handlers.append(logging.FileHandler(Config.LOG_FILE))

    logging.basicConfig(
        level=(level or Config.LOG_LEVEL).upper(),
        format='%(asctime)s %(levelname)s: %(message)s',
        handlers=handlers,
    )
