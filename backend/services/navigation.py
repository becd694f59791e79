"""Destination descriptors for handing a place off to external map apps."""
from __future__ import annotations

from urllib.parse import urlencode

from domain.models import DirectionsMode, NavigationDestination, Place

APPLE_MAPS_URL = "https://maps.apple.com/"
GOOGLE_MAPS_APP_URL = "comgooglemaps://"
GOOGLE_MAPS_WEB_URL = "https://www.google.com/maps/dir/"

_APPLE_DIRFLG = {
    DirectionsMode.DRIVING: "d",
    DirectionsMode.WALKING: "w",
    DirectionsMode.TRANSIT: "r",
}


def build_destination(place: Place, mode: DirectionsMode = DirectionsMode.DRIVING) -> NavigationDestination:
    """Build app and web direction links for `place`; the web link is the fallback when the app is missing."""
    latlon = f"{place.latitude},{place.longitude}"
    apple = APPLE_MAPS_URL + "?" + urlencode(
        {"daddr": latlon, "q": place.name, "dirflg": _APPLE_DIRFLG[mode]}
    )
    google_app = GOOGLE_MAPS_APP_URL + "?" + urlencode(
        {"daddr": latlon, "directionsmode": mode.value}
    )
    google_web = GOOGLE_MAPS_WEB_URL + "?" + urlencode(
        {"api": "1", "destination": latlon, "travelmode": mode.value}
    )
    return NavigationDestination(
        coordinate=place.coordinate,
        label=place.name,
        mode=mode,
        apple_maps_url=apple,
        google_maps_app_url=google_app,
        google_maps_web_url=google_web,
    )
