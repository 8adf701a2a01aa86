"""
Admin forensics view of submission events.

Attaches each event's fraud check and, for events whose stored check holds
no photo metadata, recovers it by re-reading the stored photos. Remote
lookups per request are capped.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from adl.core.config import settings
from adl.crowdsource.events import PointEvent, timestamp_sort_key
from adl.crowdsource.fraud import (
    SubmissionFraudCheck,
    SubmissionPhotoMetadata,
    build_photo_fraud_metadata,
    is_fraud_check_effectively_empty,
    is_photo_metadata_effectively_empty,
    parse_submission_fraud_check,
)
from adl.crowdsource.photo_metadata import (
    ExtractedPhotoMetadata,
    extract_photo_metadata_from_url,
    is_http_url,
)

logger = logging.getLogger(__name__)

MetadataFetcher = Callable[[str], Awaitable[Optional[ExtractedPhotoMetadata]]]


def merge_photo_metadata(
    existing: Optional[SubmissionPhotoMetadata],
    recovered: Optional[SubmissionPhotoMetadata],
    has_url: bool,
) -> Optional[SubmissionPhotoMetadata]:
    """Prefer stored metadata that has content, then recovered metadata."""
    if not has_url:
        return existing
    if existing is not None and not is_photo_metadata_effectively_empty(existing):
        return existing
    return recovered or existing


class ForensicsService:
    """
    Builds the admin event listing with fraud checks.

    Args:
        fetcher: Coroutine reading metadata from a photo URL
        lookup_cap: Maximum remote photo fetches per listing
    """

    def __init__(
        self,
        fetcher: Optional[MetadataFetcher] = None,
        lookup_cap: Optional[int] = None,
    ):
        self.fetcher = fetcher or extract_photo_metadata_from_url
        self.lookup_cap = settings.admin_forensics_lookup_cap if lookup_cap is None else lookup_cap

    async def build_admin_events(self, events: Iterable[PointEvent]) -> List[Dict[str, Any]]:
        """
        Serialize events newest first, each with a ``fraudCheck`` entry.

        Args:
            events: Events visible to the admin

        Returns:
            Event dictionaries including userId and fraudCheck
        """
        ordered = sorted(events, key=lambda e: timestamp_sort_key(e.created_at), reverse=True)
        remaining = self.lookup_cap
        recovered_count = 0
        results = []

        for event in ordered:
            fraud_check = parse_submission_fraud_check(event.details.get("fraudCheck"))
            if remaining > 0 and is_fraud_check_effectively_empty(fraud_check):
                recovered, used = await self._recover(event, fraud_check, remaining)
                remaining -= used
                if recovered is not None:
                    fraud_check = recovered
                    recovered_count += 1

            data = event.to_dict()
            data["fraudCheck"] = fraud_check.to_dict() if fraud_check else None
            results.append(data)

        if recovered_count:
            logger.info(f"Recovered fraud checks for {recovered_count} events from stored photos")
        return results

    async def _recover(
        self,
        event: PointEvent,
        existing: Optional[SubmissionFraudCheck],
        budget: int,
    ) -> Tuple[Optional[SubmissionFraudCheck], int]:
        primary_url = event.photo_url if is_http_url(event.photo_url) else None
        secondary_url = event.details.get("secondPhotoUrl")
        secondary_url = secondary_url if is_http_url(secondary_url) else None
        if not primary_url and not secondary_url:
            return None, 0

        submission_location = existing.submission_location if existing else event.location
        ip_location = existing.ip_location if existing else None
        submission_threshold = (
            existing.submission_match_threshold_km if existing
            else settings.submission_gps_match_threshold_km
        )
        ip_threshold = existing.ip_match_threshold_km if existing else settings.ip_photo_match_km

        used = 0
        recovered: Dict[str, Optional[SubmissionPhotoMetadata]] = {"primary": None, "secondary": None}
        for slot, url in (("primary", primary_url), ("secondary", secondary_url)):
            if not url or used >= budget:
                continue
            used += 1
            extracted = await self.fetcher(url)
            recovered[slot] = build_photo_fraud_metadata(
                extracted, submission_location, ip_location, submission_threshold, ip_threshold
            )

        fraud_check = SubmissionFraudCheck(
            submission_location=submission_location,
            effective_location=existing.effective_location if existing else event.location,
            ip_location=ip_location,
            primary_photo=merge_photo_metadata(
                existing.primary_photo if existing else None, recovered["primary"], bool(primary_url)
            ),
            secondary_photo=merge_photo_metadata(
                existing.secondary_photo if existing else None, recovered["secondary"], bool(secondary_url)
            ),
            submission_match_threshold_km=submission_threshold,
            ip_match_threshold_km=ip_threshold,
        )
        return fraud_check, used
