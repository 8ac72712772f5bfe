import csv
import io
import json
import math
import re
import uuid

import requests
import structlog

import config
from errors import CatalogUnavailable
from models import Product

logger = structlog.get_logger(__name__)

# Canonical product field -> header names seen in the sheet, matched
# case-insensitively. The first alias with a non-empty value wins.
FIELD_ALIASES = {
    'id': ('id', 'codigo', 'code', 'sku'),
    'name': ('nombre', 'producto', 'name', 'product', 'descripcion'),
    'unit_price': ('precio', 'price', 'unit_price', 'precio_venta'),
    'stock': ('stock', 'existencias', 'inventario', 'qty'),
    'unit': ('unidad', 'unit', 'um', 'medida'),
}

_NOT_NUMBER = re.compile(r'[^0-9,.\-]')


def parse_number(value):
    """Parse a price or stock cell into a non-negative float.

    Sheets hand back things like "S/ 1.234,50", "$1,234.50" or "12,5". Currency
    symbols and spaces are dropped; whichever of ',' or '.' comes last is taken
    as the decimal separator. Anything unparsable becomes 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = _NOT_NUMBER.sub('', str(value)).strip('.,')
        if not text:
            return 0.0
        if ',' in text and '.' in text:
            if text.rfind(',') > text.rfind('.'):
                text = text.replace('.', '').replace(',', '.')
            else:
                text = text.replace(',', '')
        elif ',' in text:
            # "1,234,567" is grouping; a single comma is a decimal separator
            if text.count(',') > 1:
                text = text.replace(',', '')
            else:
                text = text.replace(',', '.')
        elif text.count('.') > 1:
            text = text.replace('.', '')
        try:
            number = float(text)
        except ValueError:
            return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def _generate_id():
    return uuid.uuid4().hex[:9]


def _lookup(record, aliases):
    lowered = {str(k).strip().lower(): v for k, v in record.items() if k is not None}
    for alias in aliases:
        value = lowered.get(alias)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return None


def normalize_record(record):
    """Map one raw catalog row (JSON object or CSV row) onto a Product."""
    product_id = _lookup(record, FIELD_ALIASES['id'])
    name = _lookup(record, FIELD_ALIASES['name'])
    unit = _lookup(record, FIELD_ALIASES['unit'])
    return Product(
        id=str(product_id) if product_id is not None else _generate_id(),
        name=str(name) if name is not None else config.DEFAULT_PRODUCT_NAME,
        unit_price=parse_number(_lookup(record, FIELD_ALIASES['unit_price'])),
        stock=parse_number(_lookup(record, FIELD_ALIASES['stock'])),
        unit=str(unit) if unit is not None else '',
    )


def parse_catalog(body, content_type=None):
    """Turn a catalog response body into a list of raw records.

    Accepts a JSON array, a JSON object wrapping the array under "data", or a
    CSV feed with a header row.
    """
    if isinstance(body, bytes):
        body = body.decode('utf-8-sig')
    text = (body or '').lstrip('\ufeff').strip()
    ctype = (content_type or '').lower()

    if not text:
        raise CatalogUnavailable("Catalog response was empty")
    if 'html' in ctype or text.startswith('<'):
        # Apps Script answers errors with an HTML page
        raise CatalogUnavailable("Catalog endpoint returned an HTML page instead of data")

    if 'csv' in ctype or not text.startswith(('[', '{')):
        reader = csv.DictReader(io.StringIO(text))
        return [
            row for row in reader
            if any(isinstance(v, str) and v.strip() for v in row.values())
        ]

    try:
        data = json.loads(text)
    except ValueError as exc:
        raise CatalogUnavailable(f"Catalog response is not valid JSON: {exc}") from exc

    if isinstance(data, dict):
        data = data.get('data')
    if not isinstance(data, list):
        raise CatalogUnavailable("Catalog JSON must be an array or an object with a 'data' array")
    return [item for item in data if isinstance(item, dict)]


def fetch_catalog(url, session=None, timeout=config.CATALOG_TIMEOUT):
    http = session or requests
    try:
        response = http.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise CatalogUnavailable(f"Could not reach catalog at {url}: {exc}") from exc
    return parse_catalog(response.text, response.headers.get('Content-Type'))

#catalog store
class CatalogStore:
    """Product list fetched once at startup and searched by name afterwards."""

    def __init__(self, url=None, session=None):
        self.url = url or config.CATALOG_URL
        self.session = session
        self._products = []
        # None until the first load attempt finishes
        self.available = None
        self.error = None

    @property
    def products(self):
        return list(self._products)

    def __len__(self):
        return len(self._products)

    def load(self, source=None):
        """Load the catalog from a URL or from a callable returning raw records.

        On failure the store is marked unavailable and CatalogUnavailable is
        raised; previously loaded products are kept.
        """
        source = self.url if source is None else source
        try:
            if callable(source):
                raw = source()
            else:
                raw = fetch_catalog(source, session=self.session)
            products = [normalize_record(r) for r in raw]
        except CatalogUnavailable as exc:
            self._mark_unavailable(exc)
            raise
        except Exception as exc:
            error = CatalogUnavailable(f"Could not load catalog: {exc}")
            self._mark_unavailable(error)
            raise error from exc

        self._products = products
        self.available = True
        self.error = None
        logger.info("Catalog loaded", products=len(products))
        return self.products

    def _mark_unavailable(self, exc):
        self.available = False
        self.error = exc
        logger.error("Catalog unavailable", error=str(exc))

    def get(self, product_id):
        for product in self._products:
            if product.id == product_id:
                return product
        return None

    def search(self, term, limit=None):
        needle = (term or '').strip().lower()
        if len(needle) < config.MIN_SEARCH_LENGTH:
            return []
        hits = [p for p in self._products if needle in p.name.lower()]
        if limit:
            return hits[:limit]
        return hits

    def status_text(self):
        if self.available is None:
            return "Syncing products..."
        if self.available:
            return f"Inventory ready ({len(self._products)} products)"
        return "Connection error. Reload the app."
