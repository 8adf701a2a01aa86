"""
Pytest configuration and fixtures
"""
import base64
import io
import pytest
import sys
from pathlib import Path

from PIL import Image
from PIL.TiffImagePlugin import IFDRational

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from adl.core.geo_utils import Location
from adl.crowdsource.events import EventType, PointEvent


# Inside the Bonamoussadi bounding box
BONAMOUSSADI = Location(latitude=4.0877, longitude=9.7394)
# Yaounde: in Cameroon, outside Bonamoussadi
YAOUNDE = Location(latitude=3.8480, longitude=11.5021)


def _dms(value: float):
    value = abs(value)
    degrees = int(value)
    minutes_float = (value - degrees) * 60
    minutes = int(minutes_float)
    seconds = round((minutes_float - minutes) * 60 * 10000)
    return (IFDRational(degrees, 1), IFDRational(minutes, 1), IFDRational(seconds, 10000))


def build_jpeg(
    location: Location = None,
    captured_at: str = None,
    make: str = None,
    model: str = None,
) -> bytes:
    """Small JPEG with optional GPS, capture time and camera EXIF tags."""
    exif = Image.Exif()
    if make:
        exif[0x010F] = make
    if model:
        exif[0x0110] = model
    if captured_at:
        exif[0x8769] = {0x9003: captured_at}
    if location is not None:
        exif[0x8825] = {
            1: "N" if location.latitude >= 0 else "S",
            2: _dms(location.latitude),
            3: "E" if location.longitude >= 0 else "W",
            4: _dms(location.longitude),
        }

    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 120, 40)).save(buffer, format="JPEG", exif=exif)
    return buffer.getvalue()


def to_data_url(data: bytes, mime: str = "image/jpeg") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def make_event(
    event_id: str,
    point_id: str = "point-1",
    event_type: EventType = EventType.CREATE,
    user_id: str = "alice",
    category: str = "pharmacy",
    details: dict = None,
    created_at: str = "2025-01-01T10:00:00.000Z",
    location: Location = BONAMOUSSADI,
    photo_url: str = None,
) -> PointEvent:
    return PointEvent(
        id=event_id,
        point_id=point_id,
        event_type=event_type,
        user_id=user_id,
        category=category,
        location=location,
        details=details if details is not None else {"name": "Pharmacie du Rond-Point", "isOpenNow": True},
        created_at=created_at,
        photo_url=photo_url,
    )


@pytest.fixture
def bonamoussadi():
    """Location inside the contribution geofence."""
    return BONAMOUSSADI


@pytest.fixture
def gps_jpeg():
    """JPEG whose EXIF GPS points inside Bonamoussadi."""
    return build_jpeg(
        location=BONAMOUSSADI,
        captured_at="2025:03:14 09:26:53",
        make="TECNO",
        model="Spark 10",
    )


@pytest.fixture
def plain_jpeg():
    """JPEG without any EXIF metadata."""
    return build_jpeg()


@pytest.fixture
def pharmacy_create_body(gps_jpeg):
    """A valid pharmacy CREATE submission."""
    return {
        "eventType": "CREATE_EVENT",
        "category": "pharmacy",
        "location": BONAMOUSSADI.to_dict(),
        "details": {"name": "Pharmacie du Rond-Point", "isOpenNow": True},
        "imageBase64": to_data_url(gps_jpeg),
    }
