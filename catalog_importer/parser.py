"""CSV parser for marketplace listing exports."""

import csv
import io
import logging
import re
from pathlib import Path
from urllib.parse import urlparse

from .models import ProductRecord

logger = logging.getLogger(__name__)

TAG_TOKEN_SPLIT = re.compile(r"[_\-\s]+")
PRICE_NOISE = re.compile(r"[^0-9.,]")
LEADING_NUMBER = re.compile(r"^\d*\.?\d*")


class CsvStructureError(Exception):
    """The file cannot be imported at all (unreadable, no header, no title column)."""


def parse_tags(raw: str) -> list[str]:
    """Split a comma-separated tag cell, keeping order, case and duplicates."""
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


def tag_tokens(tags: list[str], lowercase: bool = False) -> list[str]:
    """Break tags into sub-tokens on underscores, hyphens and whitespace.

    ``"bridal_games-bundle"`` becomes ``["bridal", "games", "bundle"]``.
    Tokens are deduplicated in first-seen order.
    """
    tokens: list[str] = []
    seen: set[str] = set()
    for tag in tags:
        text = tag.lower() if lowercase else tag
        for part in TAG_TOKEN_SPLIT.split(text):
            if part and part not in seen:
                seen.add(part)
                tokens.append(part)
    return tokens


def parse_price(raw: str) -> float:
    """Parse a price cell such as ``"$5.99"``, ``"5,99 €"`` or ``"1,299.00"``.

    When both separators appear the last one is the decimal point; a lone
    comma is a decimal comma. Anything unparsable yields 0.
    """
    text = PRICE_NOISE.sub("", raw or "")
    if not text:
        return 0.0

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    else:
        text = text.replace(",", ".")

    match = LEADING_NUMBER.match(text)
    number = match.group(0) if match else ""
    if not number or number == ".":
        return 0.0
    try:
        return max(0.0, float(number))
    except ValueError:
        return 0.0


def parse_quantity(raw: str) -> int | None:
    """Parse a numeric quantity cell, None when blank or not numeric."""
    text = (raw or "").strip()
    if not text:
        return None
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return None


def is_valid_url(url: str) -> bool:
    """Check that a string is an absolute URL with a scheme and host."""
    if not url or any(ch.isspace() for ch in url):
        return False
    parsed = urlparse(url)
    return bool(parsed.scheme) and bool(parsed.netloc)


class ListingCsvParser:
    """Parser for marketplace CSV exports."""

    TITLE_COLUMN = "TITLE"
    IMAGE_COLUMNS = tuple(f"IMAGE{i}" for i in range(1, 11))
    ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")

    def __init__(self, listing_url_template: str = "https://www.etsy.com/listing/{listing_id}"):
        """Initialize parser.

        Args:
            listing_url_template: Template turning a bare LISTING_ID into a URL
        """
        self.listing_url_template = listing_url_template

    def read(self, path: Path | str) -> tuple[dict[str, int], list[list[str]]]:
        """Read a whole CSV file.

        Args:
            path: CSV file path

        Returns:
            Header map (normalized name -> column index) and all data rows,
            blank lines included as empty rows

        Raises:
            CsvStructureError: If the file is unreadable, is not valid CSV,
                has no header or lacks a TITLE column
        """
        path = Path(path)
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise CsvStructureError(f"Could not open CSV file: {e}") from e

        text = self._decode(raw)
        reader = csv.reader(io.StringIO(text, newline=""))
        try:
            headers = next(reader, None)
            if not headers:
                raise CsvStructureError("Could not read CSV headers")

            header_map = self.build_header_map(headers)
            if self.TITLE_COLUMN not in header_map:
                raise CsvStructureError("CSV must contain a TITLE column")

            # Blank lines stay in so row numbers follow the file.
            rows = list(reader)
        except csv.Error as e:
            raise CsvStructureError(f"Could not parse CSV near line {reader.line_num}: {e}") from e

        logger.info(f"Read {len(rows)} rows from {path.name}")
        return header_map, rows

    def _decode(self, raw: bytes) -> str:
        """Decode file bytes, trying each supported encoding in turn."""
        for encoding in self.ENCODINGS:
            try:
                return raw.decode(encoding)
            except UnicodeDecodeError:
                continue
        raise CsvStructureError("Unable to decode CSV file with any supported encoding")

    def build_header_map(self, headers: list[str]) -> dict[str, int]:
        """Map upper-cased, trimmed header names to column indexes.

        Args:
            headers: Raw header cells

        Returns:
            Dictionary of normalized header -> index (first occurrence wins)
        """
        header_map: dict[str, int] = {}
        for index, header in enumerate(headers):
            key = header.strip().upper()
            if key and key not in header_map:
                header_map[key] = index
        return header_map

    def parse_row(self, row: list[str], header_map: dict[str, int], row_number: int = 0) -> ProductRecord:
        """Parse one data row into a product record.

        Args:
            row: Raw cells
            header_map: Output of build_header_map
            row_number: 1-based data row number

        Returns:
            ProductRecord (title may be empty; callers skip those)
        """

        def field(name: str) -> str:
            index = header_map.get(name.upper())
            if index is None or index >= len(row):
                return ""
            return (row[index] or "").strip()

        return ProductRecord(
            row_number=row_number,
            title=field("TITLE"),
            description=field("DESCRIPTION"),
            price=parse_price(field("PRICE")),
            sku=field("SKU"),
            tags=parse_tags(field("TAGS")),
            image_urls=self._extract_image_urls(field),
            taxonomy_path=field("SECTION"),
            quantity=parse_quantity(field("QUANTITY")),
            listing_url=self._extract_listing_url(field("LISTING_ID")),
        )

    def _extract_image_urls(self, field) -> list[str]:
        """Collect IMAGE1..IMAGE10 then PHOTOS entries.

        Args:
            field: Cell accessor for the current row

        Returns:
            Valid URLs in column order, PHOTOS duplicates dropped
        """
        urls: list[str] = []
        for column in self.IMAGE_COLUMNS:
            url = field(column)
            if is_valid_url(url):
                urls.append(url)

        for url in field("PHOTOS").split(","):
            url = url.strip()
            if is_valid_url(url) and url not in urls:
                urls.append(url)

        return urls

    def _extract_listing_url(self, value: str) -> str | None:
        """Turn a LISTING_ID cell into a listing URL.

        Args:
            value: Listing id or full URL

        Returns:
            Listing URL or None
        """
        if not value:
            return None
        if is_valid_url(value):
            return value
        if value.isdigit():
            return self.listing_url_template.format(listing_id=value)
        return None
