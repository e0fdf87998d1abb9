#!/usr/bin/env python3
"""
Projection collaborator.

Wraps pyproj transformers behind a forward/inverse point contract. The
projection id is passed through unmodified from the log header (for example
the HYSWEEP PRJ record) so it can be written back verbatim.
"""

import logging
import re
from typing import Tuple

from pyproj import CRS, Transformer

GEOGRAPHIC_IDS = ('GEOGRAPHIC', 'LL', 'LONLAT', 'LATLON', 'EPSG:4326', 'WGS84')

_UTM_ID = re.compile(r'^UTM(\d{1,2})([NS])$', re.IGNORECASE)


class Projection:
    """Forward (lon, lat) -> (x, y) and inverse point transforms."""

    def __init__(self, projection_id: str, crs: CRS = None):
        self.projection_id = projection_id
        self.crs = crs
        self.logger = logging.getLogger('Projection')

        if crs is None:
            self._forward = None
            self._inverse = None
        else:
            self._forward = Transformer.from_crs("EPSG:4326", crs, always_xy=True)
            self._inverse = Transformer.from_crs(crs, "EPSG:4326", always_xy=True)

    @classmethod
    def from_id(cls, projection_id: str) -> 'Projection':
        """
        Build a projection from a header projection id.

        Args:
            projection_id: 'UTM18N' style zone ids, 'EPSG:32618', proj4 strings,
                or a geographic id for identity transforms

        Returns:
            Projection instance

        Raises:
            ValueError: If the id cannot be interpreted
        """
        text = projection_id.strip()
        if text.upper() in GEOGRAPHIC_IDS:
            return cls(text)

        match = _UTM_ID.match(text)
        if match:
            zone = int(match.group(1))
            if not 1 <= zone <= 60:
                raise ValueError(f"Invalid UTM zone in projection id {projection_id!r}")
            epsg = (32600 if match.group(2).upper() == 'N' else 32700) + zone
            return cls(text, CRS.from_epsg(epsg))

        try:
            if text.startswith('+'):
                crs = CRS.from_proj4(text)
            else:
                crs = CRS.from_user_input(text)
        except Exception as e:
            raise ValueError(f"Unsupported projection id {projection_id!r}: {e}") from e
        return cls(text, crs)

    @classmethod
    def utm_for(cls, longitude: float, latitude: float) -> 'Projection':
        """UTM projection for the zone containing a position."""
        zone = int((longitude + 180.0) / 6.0) + 1
        zone = min(max(zone, 1), 60)
        return cls.from_id(f"UTM{zone:02d}{'N' if latitude >= 0.0 else 'S'}")

    @property
    def is_geographic(self) -> bool:
        return self.crs is None

    def forward(self, lon: float, lat: float) -> Tuple[float, float]:
        """Geographic (lon, lat) in degrees to projected (x, y)."""
        if self._forward is None:
            return (lon, lat)
        x, y = self._forward.transform(lon, lat)
        return (float(x), float(y))

    def inverse(self, x: float, y: float) -> Tuple[float, float]:
        """Projected (x, y) to geographic (lon, lat) in degrees."""
        if self._inverse is None:
            return (x, y)
        lon, lat = self._inverse.transform(x, y)
        return (float(lon), float(lat))

    def __repr__(self):
        return f"Projection({self.projection_id!r})"
