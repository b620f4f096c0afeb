# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Metadata extraction for photos.
Reads the capture date and GPS coordinates from EXIF data.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple

from PIL import Image
from PIL.ExifTags import TAGS, GPSTAGS

logger = logging.getLogger(__name__)

# EXIF sub-IFD pointers
EXIF_IFD_POINTER = 0x8769
GPS_IFD_POINTER = 0x8825

NO_DATE = "-"


@dataclass
class PhotoMetadata:
    """Capture date, pixel size and GPS position of one photo."""
    date_taken: Optional[datetime] = None
    width: Optional[int] = None
    height: Optional[int] = None
    gps_latitude: Optional[float] = None
    gps_longitude: Optional[float] = None

    @property
    def has_gps(self) -> bool:
        return self.gps_latitude is not None and self.gps_longitude is not None


def fraction_to_float(value: Any) -> Optional[float]:
    """
    Convert an EXIF rational to a float.

    Accepts plain numbers, objects with numerator/denominator (Pillow's
    IFDRational), (numerator, denominator) tuples, "num/den" strings and
    numeric strings.

    Returns:
        The value as a float, or None if it cannot be parsed or the
        denominator is zero.
    """
    try:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return float(value)

        if hasattr(value, 'numerator') and hasattr(value, 'denominator'):
            numerator, denominator = value.numerator, value.denominator
        elif isinstance(value, tuple) and len(value) == 2:
            numerator, denominator = value
        elif isinstance(value, (str, bytes)):
            text = value.decode('ascii') if isinstance(value, bytes) else value
            text = text.strip()
            if '/' not in text:
                return float(text)
            numerator, denominator = text.split('/', 1)
        else:
            return None

        denominator = float(denominator)
        if denominator == 0:
            return None
        return float(numerator) / denominator
    except (TypeError, ValueError, UnicodeDecodeError):
        return None


def gps_to_decimal(coordinate: Any, hemisphere: Optional[str]) -> Optional[float]:
    """
    Convert a degrees/minutes/seconds GPS coordinate to decimal degrees.

    Args:
        coordinate: Sequence of (degrees, minutes, seconds) rationals.
        hemisphere: "N", "S", "E" or "W". South and west are negative.

    Returns:
        Decimal degrees rounded to 6 places, or None if malformed.
    """
    try:
        if coordinate is None or len(coordinate) < 3:
            return None
    except TypeError:
        return None

    parts = [fraction_to_float(part) for part in coordinate[:3]]
    if any(part is None for part in parts):
        return None

    degrees, minutes, seconds = parts
    decimal = degrees + (minutes / 60.0) + (seconds / 3600.0)

    if isinstance(hemisphere, bytes):
        hemisphere = hemisphere.decode('ascii', errors='ignore')
    if hemisphere and hemisphere.strip().upper() in ('S', 'W'):
        decimal = -decimal

    return round(decimal, 6)


class MetadataExtractor:
    """Reads PhotoMetadata from JPEG and other EXIF-carrying files."""

    # EXIF date format
    EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"

    # Capture date tags, most specific first. The file modification time is never used.
    DATE_TAGS = ["DateTimeOriginal", "DateTimeDigitized", "DateTime"]

    def extract(self, image_path: str) -> PhotoMetadata:
        """
        Read the metadata of one photo.

        Missing files and unreadable images yield an empty PhotoMetadata.
        """
        metadata = PhotoMetadata()

        if not os.path.exists(image_path):
            logger.warning(f"File not found: {image_path}")
            return metadata

        try:
            with Image.open(image_path) as img:
                metadata.width, metadata.height = img.size

                exif_data = self._get_exif_data(img)
                if exif_data:
                    metadata.date_taken = self._extract_date(exif_data)

                    gps_info = exif_data.get("GPSInfo")
                    if gps_info:
                        metadata.gps_latitude, metadata.gps_longitude = (
                            self._extract_gps(gps_info)
                        )

        except Exception as e:
            logger.warning(f"Error extracting metadata from {image_path}: {e}")

        return metadata

    def _get_exif_data(self, img: Image.Image) -> dict:
        """
        Extract EXIF data as a dictionary with readable tag names.

        Tags of the Exif sub-IFD are merged in, and the GPS sub-IFD is
        returned under "GPSInfo" keyed by numeric GPS tag id.

        Args:
            img: PIL Image object.

        Returns:
            Dictionary of EXIF data.
        """
        exif_data = {}

        try:
            exif = img.getexif()
            if not exif:
                return exif_data

            for tag_id, value in exif.items():
                exif_data[TAGS.get(tag_id, tag_id)] = value

            for tag_id, value in exif.get_ifd(EXIF_IFD_POINTER).items():
                exif_data[TAGS.get(tag_id, tag_id)] = value

            gps_ifd = exif.get_ifd(GPS_IFD_POINTER)
            if gps_ifd:
                exif_data["GPSInfo"] = dict(gps_ifd)
        except Exception as e:
            logger.debug(f"Error reading EXIF: {e}")

        return exif_data

    def _extract_date(self, exif_data: dict) -> Optional[datetime]:
        """
        Extract the date the photo was taken from EXIF data.

        Args:
            exif_data: Dictionary of EXIF data.

        Returns:
            datetime or None if not found.
        """
        for tag in self.DATE_TAGS:
            date_str = exif_data.get(tag)
            if date_str:
                try:
                    if isinstance(date_str, bytes):
                        date_str = date_str.decode('utf-8')
                    if isinstance(date_str, str):
                        return datetime.strptime(
                            date_str.strip('\x00 '), self.EXIF_DATE_FORMAT
                        )
                except (ValueError, UnicodeDecodeError) as e:
                    logger.debug(f"Failed to parse date '{date_str}': {e}")

        return None

    def _extract_gps(self, gps_info: dict) -> Tuple[Optional[float], Optional[float]]:
        """
        Extract GPS coordinates from EXIF GPS info.

        A missing hemisphere reference defaults to north and east.

        Returns:
            Tuple of (latitude, longitude) or (None, None).
        """
        gps_data = {}
        for tag_id, value in gps_info.items():
            gps_data[GPSTAGS.get(tag_id, tag_id)] = value

        latitude = gps_to_decimal(
            gps_data.get("GPSLatitude"), gps_data.get("GPSLatitudeRef") or "N"
        )
        longitude = gps_to_decimal(
            gps_data.get("GPSLongitude"), gps_data.get("GPSLongitudeRef") or "E"
        )

        if latitude is None or longitude is None:
            return None, None
        return latitude, longitude


def extract_gps_coordinates(image_path: str) -> Optional[Tuple[float, float]]:
    """
    Read decimal GPS coordinates from a photo.

    Args:
        image_path: Path to image file.

    Returns:
        (latitude, longitude), or None when the photo has no usable GPS data.
    """
    metadata = MetadataExtractor().extract(image_path)
    if not metadata.has_gps:
        return None
    return metadata.gps_latitude, metadata.gps_longitude


def get_photo_date(image_path: str) -> Optional[datetime]:
    """Capture date of a photo, or None when its EXIF has none."""
    return MetadataExtractor().extract(image_path).date_taken


def format_display_date(date: Optional[datetime]) -> Tuple[str, str]:
    """Year ("2023") and short month name ("Dec") for display, "-" when unknown."""
    if date is None:
        return NO_DATE, NO_DATE
    return date.strftime("%Y"), date.strftime("%b")
