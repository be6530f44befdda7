"""MaxMind GeoLite2 offline geolocation provider."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import geoip2.database
import geoip2.errors
import maxminddb.errors

from ..errors import GeoLookupError
from .models import GeoOrgRecord

logger = logging.getLogger(__name__)


class MaxMindGeoProvider:
    """Offline geolocation provider reading GeoLite2 databases.

    Database files:
        - GeoLite2-City.mmdb: City, region, country, coordinates
        - GeoLite2-ASN.mmdb: ASN numbers and organizations

    GeoLite2 carries no separate ISP field, so the ASN organization fills
    both ``isp`` and ``org``.

    Usage:
        with MaxMindGeoProvider(Path("/var/cache/maxmind")) as provider:
            record = provider.lookup("8.8.8.8")
            print(record.country, record.as_number)
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the provider.

        Args:
            db_path: Directory containing the ``.mmdb`` files. Missing files are
                reported on first lookup rather than here.
        """
        self.db_path = Path(db_path)
        self.city_db_path = self.db_path / "GeoLite2-City.mmdb"
        self.asn_db_path = self.db_path / "GeoLite2-ASN.mmdb"

        # Readers are opened lazily and shared between worker threads
        self._city_reader: Optional[geoip2.database.Reader] = None
        self._asn_reader: Optional[geoip2.database.Reader] = None
        self._open_lock = threading.Lock()

        self.stats: Dict[str, int] = {
            'lookups': 0,
            'city_hits': 0,
            'asn_hits': 0,
            'not_found': 0,
            'errors': 0,
        }

    def _open_reader(self, path: Path) -> Optional[geoip2.database.Reader]:
        if not path.exists():
            logger.warning(f"MaxMind database not found: {path}")
            return None
        try:
            reader = geoip2.database.Reader(str(path))
        except (OSError, ValueError, maxminddb.errors.InvalidDatabaseError) as e:
            logger.error(f"Failed to open MaxMind database {path}: {e}")
            return None
        logger.debug(f"Opened MaxMind database {path}")
        return reader

    def _get_readers(self) -> tuple[Optional[geoip2.database.Reader], Optional[geoip2.database.Reader]]:
        with self._open_lock:
            if self._city_reader is None:
                self._city_reader = self._open_reader(self.city_db_path)
            if self._asn_reader is None:
                self._asn_reader = self._open_reader(self.asn_db_path)
            return self._city_reader, self._asn_reader

    def lookup(self, ip_address: str) -> GeoOrgRecord:
        """Look up geo and ASN data for an IP address.

        Args:
            ip_address: IP address to look up (IPv4 or IPv6)

        Returns:
            GeoOrgRecord with whatever the databases know about the address

        Raises:
            GeoLookupError: No database is available, or neither database
                contains the address
        """
        self.stats['lookups'] += 1
        city_reader, asn_reader = self._get_readers()
        if city_reader is None and asn_reader is None:
            self.stats['errors'] += 1
            raise GeoLookupError("geolocation database unavailable")

        data: Dict[str, Any] = {}

        if city_reader is not None:
            try:
                city_response = city_reader.city(ip_address)
                self.stats['city_hits'] += 1
                data['country'] = city_response.country.name
                data['region'] = city_response.subdivisions.most_specific.name
                data['city'] = city_response.city.name
                data['lat'] = city_response.location.latitude
                data['lon'] = city_response.location.longitude
            except geoip2.errors.AddressNotFoundError:
                logger.debug(f"IP {ip_address} not found in City database")
            except ValueError as e:
                self.stats['errors'] += 1
                raise GeoLookupError("invalid address") from e

        if asn_reader is not None:
            try:
                asn_response = asn_reader.asn(ip_address)
                self.stats['asn_hits'] += 1
                number = asn_response.autonomous_system_number
                organization = asn_response.autonomous_system_organization
                if organization:
                    data['isp'] = organization
                    data['org'] = organization
                if number:
                    data['as_number'] = f"AS{number} {organization}" if organization else f"AS{number}"
            except geoip2.errors.AddressNotFoundError:
                logger.debug(f"IP {ip_address} not found in ASN database")
            except ValueError as e:
                self.stats['errors'] += 1
                raise GeoLookupError("invalid address") from e

        if not any(value is not None for value in data.values()):
            self.stats['not_found'] += 1
            raise GeoLookupError("address not found")

        return GeoOrgRecord(**data)

    def close(self) -> None:
        """Close all database readers and release resources."""
        with self._open_lock:
            if self._city_reader is not None:
                self._city_reader.close()
                self._city_reader = None
            if self._asn_reader is not None:
                self._asn_reader.close()
                self._asn_reader = None
        logger.debug("MaxMind provider closed")

    def get_stats(self) -> Dict[str, int]:
        """Get provider statistics."""
        return dict(self.stats)

    def __enter__(self) -> MaxMindGeoProvider:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


__all__ = ['MaxMindGeoProvider']
