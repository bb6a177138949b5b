"""
GraphCalendarService - Microsoft Graph adapters for the scheduling flow.

This service handles:
- Signed-in user lookup (owner key)
- Directory search for attendee names and emails
- Meeting time suggestions for a set of attendees and a duration
- Calendar event creation for a chosen slot

Calls are made synchronously with the caller's bearer token and are never
retried; any failure is raised to the conversation engine, which aborts the
flow.
"""
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from loguru import logger

from models.schemas import TimeSlotCandidate
from error_handling.exceptions import ExternalServiceError, DispatchFailure
from error_handling.logging_config import log_api_call
from .collaborators import ResolveResult, classify_matches


SERVICE_NAME = "graph"

# Graph returns up to 7 fractional digits; datetime accepts 6
_FRACTION_RE = re.compile(r"^(?P<base>[^.]+)(?:\.(?P<fraction>\d+))?(?P<tz>Z|[+-]\d{2}:\d{2})?$")


def format_iso_duration(hours: float) -> str:
    """
    Format a duration in hours as an ISO-8601 duration.

    Examples:
        >>> format_iso_duration(1.5)
        'PT1H30M'
        >>> format_iso_duration(0.25)
        'PT0H15M'
    """
    total_minutes = int(round(hours * 60))
    return f"PT{total_minutes // 60}H{total_minutes % 60}M"


def parse_graph_datetime(value: str) -> datetime:
    """
    Parse a Graph dateTime string such as '2019-04-16T18:00:00.0000000'.

    Raises:
        ValueError: If the value is not a recognisable timestamp
    """
    match = _FRACTION_RE.match(value.strip())
    if not match:
        raise ValueError(f"Unrecognised Graph dateTime: {value!r}")

    normalized = match.group("base")
    fraction = match.group("fraction")
    if fraction:
        normalized += "." + fraction[:6].ljust(6, "0")
    tz = match.group("tz")
    if tz:
        normalized += "+00:00" if tz == "Z" else tz
    return datetime.fromisoformat(normalized)


def _escape_odata(value: str) -> str:
    return value.replace("'", "''")


class GraphCalendarService:
    """
    Microsoft Graph implementation of the attendee resolver, availability
    finder and invite dispatcher.
    """

    def __init__(
        self,
        base_url: str = "https://graph.microsoft.com/v1.0",
        timezone_name: str = "Pacific Standard Time",
        timeout: float = 25.0,
        http: Optional[requests.Session] = None,
    ):
        """
        Initialize the Graph adapter.

        Args:
            base_url: Graph REST endpoint
            timezone_name: Windows time zone name used for events and replies
            timeout: Per-request timeout in seconds
            http: requests Session (if None, creates new)
        """
        self.base_url = base_url.rstrip("/")
        self.timezone_name = timezone_name
        self.timeout = timeout
        self.http = http or requests.Session()

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Prefer": f'outlook.timezone="{self.timezone_name}"',
        }

    def _request(
        self,
        method: str,
        path: str,
        token: str,
        operation: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send one Graph request and return the decoded JSON body.

        Raises:
            ExternalServiceError: On transport errors or non-2xx replies
        """
        url = f"{self.base_url}{path}"
        start_time = time.time()
        status_code = None

        try:
            response = self.http.request(
                method,
                url,
                headers=self._headers(token),
                params=params,
                json=payload,
                timeout=self.timeout,
            )
            status_code = response.status_code
            response.raise_for_status()
            body = response.json() if response.content else {}
        except requests.RequestException as e:
            duration = time.time() - start_time
            log_api_call(SERVICE_NAME, operation, False, duration, {"status_code": status_code})
            logger.error(f"Graph {operation} failed: {e}")
            raise ExternalServiceError(
                f"Graph {operation} failed: {e}",
                service=SERVICE_NAME,
                operation=operation,
                status_code=status_code,
                original_error=e,
            ) from e
        except ValueError as e:
            duration = time.time() - start_time
            log_api_call(SERVICE_NAME, operation, False, duration, {"status_code": status_code})
            raise ExternalServiceError(
                f"Graph {operation} returned invalid JSON",
                service=SERVICE_NAME,
                operation=operation,
                status_code=status_code,
                original_error=e,
            ) from e

        duration = time.time() - start_time
        log_api_call(SERVICE_NAME, operation, True, duration, {"status_code": status_code})
        return body

    # ------------------------------------------------------------------
    # Attendee resolver
    # ------------------------------------------------------------------

    def current_user(self, token: str) -> str:
        """Return the signed-in user's principal name."""
        body = self._request("GET", "/me", token, "get_me", params={"$select": "userPrincipalName,mail"})
        identity = body.get("userPrincipalName") or body.get("mail")
        if not identity:
            raise ExternalServiceError(
                "Graph /me returned no user principal name",
                service=SERVICE_NAME,
                operation="get_me",
            )
        return identity

    def resolve(self, query: str, token: str) -> ResolveResult:
        """
        Look up a name or email in the organization directory.

        Email queries must match exactly; name queries match the start of
        the display name or principal name.
        """
        escaped = _escape_odata(query)
        if "@" in query:
            odata_filter = f"userPrincipalName eq '{escaped}' or mail eq '{escaped}'"
        else:
            odata_filter = f"startswith(displayName,'{escaped}') or startswith(userPrincipalName,'{escaped}')"

        body = self._request(
            "GET",
            "/users",
            token,
            "resolve_attendee",
            params={"$filter": odata_filter, "$select": "displayName,userPrincipalName"},
        )

        identities = []
        for user in body.get("value", []):
            identity = user.get("userPrincipalName")
            if identity and identity not in identities:
                identities.append(identity)

        result = classify_matches(query, identities)
        logger.info(f"Resolved attendee '{query}' -> {type(result).__name__} ({len(identities)} matches)")
        return result

    # ------------------------------------------------------------------
    # Availability finder
    # ------------------------------------------------------------------

    def find_slots(self, attendees: List[str], duration_hours: float, token: str) -> List[TimeSlotCandidate]:
        """Return Graph's meeting time suggestions, in the order Graph ranks them."""
        payload = {
            "attendees": [
                {"type": "required", "emailAddress": {"address": email}}
                for email in attendees
            ],
            "meetingDuration": format_iso_duration(duration_hours),
            "returnSuggestionReasons": True,
        }

        body = self._request("POST", "/me/findMeetingTimes", token, "find_meeting_times", payload=payload)

        candidates = []
        for suggestion in body.get("meetingTimeSuggestions", []):
            slot = suggestion.get("meetingTimeSlot") or {}
            try:
                candidates.append(
                    TimeSlotCandidate(
                        start=parse_graph_datetime(slot["start"]["dateTime"]),
                        end=parse_graph_datetime(slot["end"]["dateTime"]),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ExternalServiceError(
                    f"Malformed meeting time suggestion: {slot}",
                    service=SERVICE_NAME,
                    operation="find_meeting_times",
                    original_error=e,
                ) from e

        logger.info(f"Graph suggested {len(candidates)} meeting times for {len(attendees)} attendees")
        return candidates

    # ------------------------------------------------------------------
    # Invite dispatcher
    # ------------------------------------------------------------------

    def create_event(
        self,
        slot: TimeSlotCandidate,
        attendees: List[str],
        title: Optional[str],
        description: Optional[str],
        token: str,
    ) -> None:
        """Create the calendar event in the signed-in user's default calendar."""
        event = {
            "subject": title or "",
            "body": {"contentType": "HTML", "content": description or ""},
            "start": {"dateTime": slot.start.strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": self.timezone_name},
            "end": {"dateTime": slot.end.strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": self.timezone_name},
            "attendees": [
                {"type": "required", "emailAddress": {"address": email}}
                for email in attendees
            ],
        }

        try:
            self._request("POST", "/me/events", token, "create_event", payload=event)
        except ExternalServiceError as e:
            raise DispatchFailure(
                "Calendar event creation failed",
                original_error=e.original_error or e,
                status_code=e.status_code,
            ) from e

        logger.info(f"Created event '{title}' at {slot.label()} for {len(attendees)} attendees")
