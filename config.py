import os

# Remote endpoint of the spreadsheet script. It answers GET with the catalog and
# accepts sales through POST. Both URLs can be pointed elsewhere from the
# environment without editing this file.
DEFAULT_API_URL = 'https://script.google.com/macros/s/AKfycbzmVGri_eeFFsZPPQ1EljkI6u_o3GprN9ApygWXJ52wznxofOIvrDwgIdV8BiXSL3Mr-w/exec'


def _env_float(name, default):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        return default


API_URL = os.environ.get('POS_API_URL') or DEFAULT_API_URL
CATALOG_URL = os.environ.get('POS_CATALOG_URL') or API_URL

# Checkout dispatch: "serial" (one sale at a time, rate limited) or "parallel"
STRATEGY_SERIAL = 'serial'
STRATEGY_PARALLEL = 'parallel'
STRATEGIES = (STRATEGY_SERIAL, STRATEGY_PARALLEL)
CHECKOUT_STRATEGY = (os.environ.get('POS_CHECKOUT_STRATEGY') or STRATEGY_SERIAL).strip().lower()

# Pause between serial submissions; the sheet script throttles bursts
SUBMIT_DELAY_SECONDS = _env_float('POS_SUBMIT_DELAY', 0.5)
# None means the transport waits as long as the remote takes
SUBMIT_TIMEOUT = _env_float('POS_SUBMIT_TIMEOUT', None)
CATALOG_TIMEOUT = 15

# Search / display
MIN_SEARCH_LENGTH = 2
MAX_RESULTS = 10
LOW_STOCK_THRESHOLD = 5
CURRENCY = 'S/'
DEFAULT_PRODUCT_NAME = 'Unnamed product'

# How long the finished overlay stays up before the UI unlocks (milliseconds)
SETTLE_DELAY_MS = 1500
