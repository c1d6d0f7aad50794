import logging
import math
import os
import re
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Config, configure_logging
from database import RealtimeStore
from errors import GatewayError
from geocode import ReverseGeocoder
from proximity import nearby
from reports import ReportGateway, filter_reports, summarize
from schemas import (
    CitizenReport,
    NearbyReport,
    ReportCreate,
    ReportPatch,
    ReportStats,
    ReportStatus,
    ReportType,
    SensorReading,
)
from sensors import SENSOR_LOCATION, SensorFeed

logger = logging.getLogger(__name__)

# "+08:00" in an unencoded query string arrives as " 08:00"
DECODED_OFFSET = re.compile(r"(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?) (\d{2}(?::?\d{2})?)$")


def parse_bound(value: str) -> datetime:
    return datetime.fromisoformat(DECODED_OFFSET.sub(r"\1+\2", value.strip()))


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    app.state.store = RealtimeStore()
    app.state.geocoder = ReverseGeocoder()
    logger.info("Connected to realtime database at %s", Config.STORE_URL)
    try:
        yield
    finally:
        app.state.store.close()
        app.state.geocoder.close()


app = FastAPI(title="AEROVANT Air Quality API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------------
# Dependencies
# ----------------------------

def get_store(request: Request) -> RealtimeStore:
    return request.app.state.store


def get_geocoder(request: Request) -> ReverseGeocoder:
    return request.app.state.geocoder


def get_gateway(store: RealtimeStore = Depends(get_store)) -> ReportGateway:
    return ReportGateway(store)


def get_feed(store: RealtimeStore = Depends(get_store)) -> SensorFeed:
    return SensorFeed(store)


# ----------------------------
# Error bodies: always {"error": ...}
# ----------------------------

@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query"))
    message = first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"error": f"Invalid parameters: {field} {message}".strip()})


@app.exception_handler(SchemaError)
async def stored_record_error_handler(request: Request, exc: SchemaError):
    logger.error("Stored record failed validation on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Stored record is malformed"})


@app.get("/")
def read_root():
    return {"message": "AEROVANT Air Quality Backend Running"}


@app.get("/health")
def health(store: RealtimeStore = Depends(get_store)):
    """Check that the backend is up and the realtime database answers."""
    response = {
        "backend": "running",
        "database": "not available",
        "database_url": "set" if os.getenv("FIREBASE_DB_URL") else "default",
        "collections": [Config.READINGS_PATH, Config.REPORTS_PATH],
    }
    try:
        store.ping()
        response["database"] = "connected"
    except GatewayError as e:
        response["database"] = f"error: {str(e)[:80]}"
    return response


# ----------------------------
# Sensor data
# ----------------------------

@app.get("/api/sensor-data", response_model=SensorReading)
def get_latest_reading(feed: SensorFeed = Depends(get_feed)):
    """Latest reading from the monitoring station."""
    return feed.latest()


@app.get("/api/sensor-data-range", response_model=list[SensorReading])
def get_reading_range(
    start: Optional[str] = None,
    end: Optional[str] = None,
    feed: SensorFeed = Depends(get_feed),
):
    """Readings between two ISO timestamps, oldest first. Bounds may carry a UTC offset."""
    if not start or not end:
        raise HTTPException(status_code=400, detail="Start and end dates are required")
    try:
        start_dt = parse_bound(start)
        end_dt = parse_bound(end)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date format")

    return feed.in_range(start_dt, end_dt)


# ----------------------------
# Citizen reports
# ----------------------------

@app.get("/api/reports", response_model=list[CitizenReport])
def list_reports(
    status: Optional[ReportStatus] = None,
    report_type: Optional[ReportType] = None,
    hide_resolved: bool = False,
    newest_first: bool = False,
    gateway: ReportGateway = Depends(get_gateway),
):
    """All reports; an unreachable store yields an empty list."""
    reports = gateway.list_reports()
    return filter_reports(reports, status, report_type, hide_resolved, newest_first)


@app.get("/api/reports/stats", response_model=ReportStats)
def report_stats(gateway: ReportGateway = Depends(get_gateway)):
    return summarize(gateway.list_reports())


@app.get("/api/reports/near-station", response_model=list[NearbyReport])
def reports_near_station(
    radius: float = Config.CITIZEN_RADIUS_KM,
    gateway: ReportGateway = Depends(get_gateway),
):
    """Reports around the monitoring station, for the citizen dashboard."""
    if math.isnan(radius) or radius < 0:
        raise HTTPException(status_code=400, detail="Invalid parameters")
    return nearby(gateway.list_reports(), SENSOR_LOCATION.latitude, SENSOR_LOCATION.longitude, radius)


@app.get("/api/reports/{report_id}", response_model=CitizenReport)
def get_report(report_id: str, gateway: ReportGateway = Depends(get_gateway)):
    return gateway.get(report_id)


@app.post("/api/reports")
def create_report(report: ReportCreate, gateway: ReportGateway = Depends(get_gateway)):
    """Submit a citizen report. It always starts as pending and undeployed."""
    created = gateway.submit(report)
    return {"success": True, **created.model_dump(mode="json")}


@app.patch("/api/reports")
def update_report(patch: ReportPatch, gateway: ReportGateway = Depends(get_gateway)):
    """Apply status, deployment and message changes, in that order."""
    if not patch.report_id:
        raise HTTPException(status_code=400, detail="Report ID is required")

    if patch.status is not None:
        gateway.update_status(patch.report_id, patch.status)

    if patch.deployed is not None:
        gateway.update_deployment(
            patch.report_id,
            patch.deployed,
            patch.deployment_date,
            patch.deployment_notes,
        )

    if patch.add_message is not None:
        updated = gateway.append_message(patch.report_id, patch.add_message)
        return updated.model_dump(mode="json")

    return {"success": True}


def _delete(report_id: Optional[str], gateway: ReportGateway):
    if not report_id:
        raise HTTPException(status_code=400, detail="Report ID is required")
    if not gateway.delete(report_id):
        raise HTTPException(status_code=500, detail="Failed to delete report")
    return {"success": True}


@app.delete("/api/reports")
def delete_report(id: Optional[str] = None, gateway: ReportGateway = Depends(get_gateway)):
    return _delete(id, gateway)


@app.delete("/api/reports/{report_id}")
def delete_report_by_path(report_id: str, gateway: ReportGateway = Depends(get_gateway)):
    return _delete(report_id, gateway)


# ----------------------------
# Proximity & geocoding
# ----------------------------

@app.get("/api/nearby-reports", response_model=list[NearbyReport])
def nearby_reports(
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    radius: float = Config.NEARBY_RADIUS_KM,
    gateway: ReportGateway = Depends(get_gateway),
):
    """Reports within `radius` km of (lat, lon), annotated with distance_km."""
    if lat is None or lon is None:
        raise HTTPException(status_code=400, detail="Latitude and longitude are required")
    if any(math.isnan(v) for v in (lat, lon, radius)):
        raise HTTPException(status_code=400, detail="Invalid parameters")

    return nearby(gateway.list_reports(), lat, lon, radius)


@app.get("/api/geocode")
def geocode(
    request: Request,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    geocoder: ReverseGeocoder = Depends(get_geocoder),
):
    if lat is None or lng is None:
        raise HTTPException(status_code=400, detail="Missing latitude or longitude")
    try:
        return geocoder.lookup(lat, lng, referer=request.headers.get("origin"))
    except GatewayError:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to reverse geocode location", "coordinates": f"{lat}, {lng}"},
        )


# ----------------------------
# Schema exposure (optional viewer support)
# ----------------------------

@app.get("/schema")
def get_schema():
    # Minimal schema metadata for integrators/viewers
    return {
        "collections": [
            {
                "name": Config.READINGS_PATH,
                "model": "SensorReading",
                "fields": [
                    "timestamp: datetime",
                    "readings.MQ135_ppm|MQ2_ppm|MQ3_ppm|MQ6_ppm|MQ9_ppm: float",
                    "environment.temperature: float",
                    "environment.humidity: float",
                    "environment.env_index: float?",
                    "ml_prediction.classification: Stable|Critical",
                    "ml_prediction.confidence: float?",
                ],
            },
            {
                "name": Config.REPORTS_PATH,
                "model": "CitizenReport",
                "fields": [
                    "description (notes): str",
                    "location_area (location): str?",
                    "latitude: float?",
                    "longitude: float?",
                    "report_type: smoke|odor|dust|other",
                    "timestamp: datetime",
                    "status: pending|investigating|resolved|dismissed",
                    "deployed: bool",
                    "deployment_date: datetime?",
                    "deployment_notes: str?",
                    "messages: ReportMessage[]",
                ],
            },
        ]
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", Config.PORT))
    uvicorn.run(app, host=Config.HOST, port=port)
