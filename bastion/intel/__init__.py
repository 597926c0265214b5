"""External IP intelligence (display only)."""

from .geolocation import GeoLocationProvider
