from __future__ import annotations

from urllib.parse import urlparse

import httpx

from .api_models import Notification
from .errors import InvalidEvent, TrackerError

SUBSCRIPTION_CONFIRMATION = "SubscriptionConfirmation"
NOTIFICATION = "Notification"


class SubscriptionError(TrackerError):
    pass


def confirm_subscription(notif: Notification, timeout_s: float = 5.0) -> None:
    """Visit the SubscribeURL of an SNS subscription confirmation.

    Only https URLs on an amazonaws.com host are followed, so the endpoint
    cannot be used to make the service call arbitrary URLs.
    """
    url = notif.subscribe_url
    if not url:
        raise InvalidEvent("subscription confirmation has no SubscribeURL")
    parsed = urlparse(url)
    host = parsed.hostname or ""
    if parsed.scheme != "https" or not (host == "amazonaws.com" or host.endswith(".amazonaws.com")):
        raise InvalidEvent(f"refusing to visit SubscribeURL {url}")
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False) as client:
            resp = client.get(url)
    except httpx.HTTPError as exc:
        raise SubscriptionError(f"failed to visit SubscribeURL {url}") from exc
    if resp.status_code != 200:
        raise SubscriptionError(f"SubscribeURL {url} returned HTTP {resp.status_code}")
