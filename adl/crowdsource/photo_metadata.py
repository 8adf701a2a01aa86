"""
Photo metadata extraction for contribution evidence.
Reads GPS, capture time and device details from EXIF using Pillow.
"""

import io
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx
from PIL import ExifTags, Image

from adl.core.config import settings
from adl.core.geo_utils import Location
from adl.crowdsource.events import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

# EXIF sub-IFD pointers
EXIF_IFD_POINTER = 0x8769
GPS_IFD_POINTER = 0x8825

EXIF_DATE_TIME_REGEX = re.compile(
    r"^(\d{4}):(\d{2}):(\d{2})[ T](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?$"
)

CAPTURE_TIME_TAGS = ("DateTimeOriginal", "DateTimeDigitized", "DateTime")

HEIC_BRANDS = ("heic", "heix", "hevc", "hevx")
HEIF_BRANDS = ("heif", "mif1", "msf1")

REASON_PARSED = "EXIF metadata parsed successfully"
REASON_RECOVERED = "Recovered EXIF metadata from stored photo URL"
REASON_UNSUPPORTED = (
    "Likely HEIC/HEIF metadata stripping or unsupported format. "
    "Enable iOS Camera Location and Most Compatible format"
)
REASON_PARSE_ERROR = "Unable to parse EXIF metadata from image bytes"
REASON_MISSING_UPLOAD = "No EXIF metadata found in uploaded file"
REASON_MISSING_REMOTE = "No EXIF metadata found in stored photo bytes"


class ExifStatus(str, Enum):
    """Outcome of reading a photo's EXIF block."""
    OK = "ok"
    MISSING = "missing"
    PARSE_ERROR = "parse_error"
    UNSUPPORTED_FORMAT = "unsupported_format"
    FALLBACK_RECOVERED = "fallback_recovered"


class ExifSource(str, Enum):
    """Where the bytes that were read came from."""
    UPLOAD_BUFFER = "upload_buffer"
    REMOTE_URL = "remote_url"
    NONE = "none"


@dataclass(frozen=True)
class ExtractedPhotoMetadata:
    """Metadata read from one photo, with the status of the read."""
    gps: Optional[Location]
    captured_at: Optional[str]
    device_make: Optional[str]
    device_model: Optional[str]
    exif_status: ExifStatus
    exif_reason: Optional[str]
    exif_source: ExifSource

    @property
    def has_signal(self) -> bool:
        return bool(self.gps or self.captured_at or self.device_make or self.device_model)

    @property
    def read_failed(self) -> bool:
        return self.exif_status in (ExifStatus.PARSE_ERROR, ExifStatus.UNSUPPORTED_FORMAT)

    @classmethod
    def empty(
        cls,
        status: ExifStatus,
        reason: Optional[str],
        source: ExifSource,
    ) -> "ExtractedPhotoMetadata":
        return cls(
            gps=None,
            captured_at=None,
            device_make=None,
            device_model=None,
            exif_status=status,
            exif_reason=reason,
            exif_source=source,
        )


def _clean_string(value: Any) -> Optional[str]:
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if not isinstance(value, str):
        return None
    value = value.strip().strip("\x00").strip()
    return value or None


def parse_capture_time(value: Any) -> Optional[str]:
    """
    Normalize a capture timestamp to ISO-8601 UTC.

    EXIF ``YYYY:MM:DD HH:MM:SS[.fff]`` values carry no zone and are read as
    UTC; ISO strings and datetimes are accepted as well.
    """
    if isinstance(value, datetime):
        return format_timestamp(value)
    text = _clean_string(value)
    if not text:
        return None

    match = EXIF_DATE_TIME_REGEX.match(text)
    if match:
        year, month, day, hour, minute, second = (int(part) for part in match.groups()[:6])
        millis = int((match.group(7) or "0")[:3].ljust(3, "0"))
        try:
            parsed = datetime(
                year, month, day, hour, minute, second, millis * 1000, tzinfo=timezone.utc
            )
            return format_timestamp(parsed)
        except ValueError:
            pass

    parsed_iso = parse_timestamp(text)
    return format_timestamp(parsed_iso) if parsed_iso else None


def _rational(value: Any) -> Optional[float]:
    if isinstance(value, tuple) and len(value) == 2:
        numerator, denominator = value
        try:
            number = float(numerator) / float(denominator)
        except (TypeError, ValueError, ZeroDivisionError):
            return None
    else:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
    return number if math.isfinite(number) else None


def parse_dms(value: Any) -> Optional[float]:
    """Decimal degrees from a single number or a (degrees, minutes, seconds) sequence."""
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        # bare (numerator, denominator) pair
        if len(value) == 2 and all(isinstance(part, int) for part in value):
            return _rational(tuple(value))
        degrees = _rational(value[0])
        if degrees is None:
            return None
        minutes = _rational(value[1]) if len(value) > 1 else None
        seconds = _rational(value[2]) if len(value) > 2 else None
        return degrees + (minutes or 0.0) / 60 + (seconds or 0.0) / 3600
    return _rational(value)


def apply_hemisphere(value: float, ref: Any, negative: str) -> float:
    """Sign a coordinate from its N/S or E/W reference."""
    ref_text = _clean_string(ref)
    if not ref_text:
        return value
    if ref_text.upper().startswith(negative):
        return -abs(value)
    return abs(value)


def detect_image_format(image_bytes: bytes) -> str:
    """Sniff the container format from magic bytes."""
    if image_bytes[:3] == b"\xff\xd8\xff":
        return "jpeg"
    if len(image_bytes) >= 8 and image_bytes[:4] == b"\x89PNG":
        return "png"
    if len(image_bytes) >= 12 and image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "webp"
    if len(image_bytes) >= 12 and image_bytes[4:8] == b"ftyp":
        brand = image_bytes[8:12].decode("ascii", errors="ignore").lower()
        if brand.startswith(HEIC_BRANDS):
            return "heic"
        if brand in HEIF_BRANDS:
            return "heif"
    return "unknown"


def _read_exif_tags(image_bytes: bytes) -> Dict[str, Any]:
    """Flatten base, EXIF and GPS IFDs into one name -> value mapping."""
    with Image.open(io.BytesIO(image_bytes)) as image:
        exif = image.getexif()
        tags: Dict[str, Any] = {
            ExifTags.TAGS.get(tag, str(tag)): value for tag, value in exif.items()
        }
        for tag, value in exif.get_ifd(EXIF_IFD_POINTER).items():
            tags[ExifTags.TAGS.get(tag, str(tag))] = value
        for tag, value in exif.get_ifd(GPS_IFD_POINTER).items():
            tags[ExifTags.GPSTAGS.get(tag, str(tag))] = value
    return tags


def _gps_from_tags(tags: Dict[str, Any]) -> Optional[Location]:
    latitude = parse_dms(tags.get("GPSLatitude"))
    longitude = parse_dms(tags.get("GPSLongitude"))
    if latitude is None or longitude is None:
        return None
    return Location(
        latitude=apply_hemisphere(latitude, tags.get("GPSLatitudeRef"), "S"),
        longitude=apply_hemisphere(longitude, tags.get("GPSLongitudeRef"), "W"),
    )


def _context(
    mime: Optional[str] = None,
    ext: Optional[str] = None,
    byte_length: Optional[int] = None,
) -> str:
    parts = []
    mime = _clean_string(mime)
    ext = _clean_string(ext)
    if mime:
        parts.append(f"mime={mime}")
    if ext:
        parts.append(f"ext={ext}")
    if byte_length:
        parts.append(f"bytes={int(byte_length)}")
    return "; ".join(parts)


def with_context(reason: str, **context: Any) -> str:
    """Append ``(mime=...; ext=...; bytes=...).`` to a reason when known."""
    suffix = _context(**context)
    return f"{reason} ({suffix})." if suffix else reason


def extract_photo_metadata(
    image_bytes: bytes,
    source: ExifSource = ExifSource.UPLOAD_BUFFER,
    mime: Optional[str] = None,
    ext: Optional[str] = None,
    byte_length: Optional[int] = None,
) -> ExtractedPhotoMetadata:
    """
    Extract GPS, capture time and device details from photo bytes.

    Never raises: an unreadable or metadata-free photo yields an empty
    report whose status explains why.

    Args:
        image_bytes: Raw image bytes
        source: Where the bytes came from
        mime: Declared MIME type, used for the reason context
        ext: File extension, used for the reason context
        byte_length: Size reported in the reason context (defaults to len)

    Returns:
        ExtractedPhotoMetadata
    """
    if byte_length is None:
        byte_length = len(image_bytes)
    context = {"mime": mime, "ext": ext, "byte_length": byte_length}

    tags: Dict[str, Any] = {}
    parse_failed = False
    try:
        tags = _read_exif_tags(image_bytes)
    except Exception as e:
        parse_failed = True
        logger.debug(f"EXIF read failed ({source.value}): {e}")

    gps = _gps_from_tags(tags)
    captured_at = None
    for tag in CAPTURE_TIME_TAGS:
        captured_at = parse_capture_time(tags.get(tag))
        if captured_at:
            break

    extracted = ExtractedPhotoMetadata(
        gps=gps,
        captured_at=captured_at,
        device_make=_clean_string(tags.get("Make")),
        device_model=_clean_string(tags.get("Model")),
        exif_status=ExifStatus.OK,
        exif_reason=None,
        exif_source=source,
    )

    if extracted.has_signal:
        remote = source == ExifSource.REMOTE_URL
        return ExtractedPhotoMetadata(
            gps=extracted.gps,
            captured_at=extracted.captured_at,
            device_make=extracted.device_make,
            device_model=extracted.device_model,
            exif_status=ExifStatus.FALLBACK_RECOVERED if remote else ExifStatus.OK,
            exif_reason=with_context(REASON_RECOVERED if remote else REASON_PARSED, **context),
            exif_source=source,
        )

    if detect_image_format(image_bytes) in ("heic", "heif"):
        return ExtractedPhotoMetadata.empty(
            ExifStatus.UNSUPPORTED_FORMAT, with_context(REASON_UNSUPPORTED, **context), source
        )
    if parse_failed:
        return ExtractedPhotoMetadata.empty(
            ExifStatus.PARSE_ERROR, with_context(REASON_PARSE_ERROR, **context), source
        )
    missing_reason = REASON_MISSING_REMOTE if source == ExifSource.REMOTE_URL else REASON_MISSING_UPLOAD
    return ExtractedPhotoMetadata.empty(
        ExifStatus.MISSING, with_context(missing_reason, **context), source
    )


def infer_remote_ext(photo_url: str) -> Optional[str]:
    """File extension of a photo URL's path, if it has a plausible one."""
    path = urlparse(photo_url).path
    if "." not in path:
        return None
    ext = path.rsplit(".", 1)[1].strip().lower()
    if not ext or len(ext) > 12:
        return None
    return ext


def is_http_url(value: Any) -> bool:
    return isinstance(value, str) and re.match(r"^https?://", value, re.IGNORECASE) is not None


async def extract_photo_metadata_from_url(
    photo_url: str,
    timeout_ms: Optional[int] = None,
    max_bytes: Optional[int] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[ExtractedPhotoMetadata]:
    """
    Recover metadata from a stored photo by fetching it again.

    Args:
        photo_url: Public URL of the stored photo
        timeout_ms: Fetch timeout (defaults to the forensics setting)
        max_bytes: Largest body read (defaults to the forensics setting)
        client: Optional shared httpx client

    Returns:
        ExtractedPhotoMetadata, or None for non-HTTP URLs
    """
    if not is_http_url(photo_url):
        return None

    timeout_ms = timeout_ms or settings.admin_forensics_fetch_timeout_ms
    max_bytes = max_bytes or settings.admin_forensics_max_image_bytes
    source = ExifSource.REMOTE_URL
    ext = infer_remote_ext(photo_url)

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=timeout_ms / 1000, follow_redirects=True)

    try:
        async with client.stream("GET", photo_url, timeout=timeout_ms / 1000) as response:
            mime = _clean_string(response.headers.get("content-type"))
            if not response.is_success:
                return ExtractedPhotoMetadata.empty(
                    ExifStatus.PARSE_ERROR,
                    with_context(
                        f"Unable to fetch remote photo for EXIF recovery (HTTP {response.status_code})",
                        mime=mime, ext=ext,
                    ),
                    source,
                )

            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > max_bytes:
                    return ExtractedPhotoMetadata.empty(
                        ExifStatus.PARSE_ERROR,
                        with_context(
                            f"Remote photo exceeds EXIF fetch limit ({max_bytes} bytes)",
                            mime=mime, ext=ext, byte_length=len(body),
                        ),
                        source,
                    )

        if not body:
            return ExtractedPhotoMetadata.empty(
                ExifStatus.MISSING,
                with_context("Remote photo is empty; EXIF recovery skipped", mime=mime, ext=ext),
                source,
            )

        return extract_photo_metadata(
            bytes(body), source=source, mime=mime, ext=ext, byte_length=len(body)
        )

    except httpx.TimeoutException:
        logger.warning(f"Timed out fetching {photo_url} for EXIF recovery")
        reason = f"Timed out fetching remote photo after {timeout_ms}ms"
    except httpx.HTTPError as e:
        logger.warning(f"Error fetching {photo_url} for EXIF recovery: {e}")
        reason = "Unable to fetch remote photo for EXIF recovery"
    finally:
        if owns_client:
            await client.aclose()

    return ExtractedPhotoMetadata.empty(
        ExifStatus.PARSE_ERROR, with_context(reason, ext=ext), source
    )
