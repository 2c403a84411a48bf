"""
Pytest fixtures and configuration for tabharvest tests.

=============================================================================
Test Classification
=============================================================================

- @pytest.mark.unit: Single class/function, no browser, no network
  - DEFAULT: Tests without marker are auto-classified as unit
- @pytest.mark.integration: Several components wired together, browser and
  records API mocked
- @pytest.mark.e2e: Real Chrome attached over CDP with logged-in sessions
  - DEFAULT EXCLUDED: Must use `pytest -m e2e` to run
- @pytest.mark.slow: Tests taking more than 5 seconds
  - DEFAULT EXCLUDED: Must use `pytest -m slow` to run

=============================================================================
Mock Strategy
=============================================================================

- Browser (Playwright Page / BrowserContext): MagicMock with AsyncMock methods
  built by make_mock_page / make_mock_context
- Records API: httpx.MockTransport passed to RecordsClient
- File I/O: tmp_path
- Timing: fast_timings shrinks every settle delay and polling budget
"""

import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment before importing anything else
os.environ["TABHARVEST_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")
os.environ["TABHARVEST_GENERAL__LOG_LEVEL"] = "DEBUG"

from tabharvest.utils.config import get_settings  # noqa: E402

UNIT_APP = "https://app.propertymeld.com"
ORG = "2611/m/2611"


# =============================================================================
# Pytest Hooks for Test Classification
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line(
        "markers", "unit: Unit tests with no external dependencies (fast, <1s/test)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests with mocked browser and API (<5s/test)"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests requiring a real Chrome session (excluded by default)"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds (excluded by default)"
    )


def pytest_collection_modifyitems(config, items):
    """Tests without explicit markers are assumed to be unit tests."""
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings():
    """Reload settings for every test so env overrides never leak."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fast_timings(monkeypatch):
    """Shrink settle delays and polling budgets so flows run in milliseconds."""
    overrides = {
        "TABHARVEST_TABS__SPA_SETTLE_DELAY": "0.0",
        "TABHARVEST_TABS__NAVIGATION_TIMEOUT": "1.0",
        "TABHARVEST_POLLING__AGENT__MAX_WAIT": "0.3",
        "TABHARVEST_POLLING__AGENT__BASE_DELAY": "0.01",
        "TABHARVEST_POLLING__AGENT__MAX_DELAY": "0.02",
        "TABHARVEST_POLLING__INVOICE_AGENT__MAX_WAIT": "0.3",
        "TABHARVEST_POLLING__INVOICE_AGENT__BASE_DELAY": "0.01",
        "TABHARVEST_POLLING__INVOICE_AGENT__MAX_DELAY": "0.02",
        "TABHARVEST_POLLING__RENDER__TIMEOUT": "0.05",
        "TABHARVEST_POLLING__RENDER__INTERVAL": "0.01",
        "TABHARVEST_POLLING__RENDER__SETTLE_DELAY": "0.0",
        "TABHARVEST_DOWNLOADS__INTER_WAVE_PAUSE": "0.0",
        "TABHARVEST_DOWNLOADS__POST_DOWNLOAD_DELAY": "0.0",
        "TABHARVEST_DOWNLOADS__SEQUENTIAL_DELAY": "0.0",
        "TABHARVEST_RECORDS_API__MAX_RETRIES": "0",
    }
    for key, value in overrides.items():
        monkeypatch.setenv(key, value)
    get_settings.cache_clear()
    return get_settings()


# =============================================================================
# Browser mocks
# =============================================================================


@pytest.fixture
def make_mock_page():
    """Factory for a Playwright Page mock serving fixed (or scripted) HTML.

    Pass a list as html to return successive snapshots; the last one repeats.
    """

    def _make(html: str | list[str] = "<html><body></body></html>", url: str = ""):
        page = MagicMock()
        page.url = url
        page.is_closed.return_value = False
        page.goto = AsyncMock(return_value=None)
        page.wait_for_load_state = AsyncMock(return_value=None)
        page.close = AsyncMock(return_value=None)

        if isinstance(html, list):
            snapshots = list(html)

            async def _content():
                if len(snapshots) > 1:
                    return snapshots.pop(0)
                return snapshots[0]

            page.content = AsyncMock(side_effect=_content)
        else:
            page.content = AsyncMock(return_value=html)
        return page

    return _make


@pytest.fixture
def make_mock_context():
    """Factory for a BrowserContext mock.

    pages_by_url maps a URL prefix to the page mock that new_page() hands out
    once goto() is called with a matching URL; context.visited records the
    navigated URLs. A single page may be given
    instead for flows that open one tab.
    """

    def _make(page=None, pages_by_url: dict | None = None):
        context = MagicMock()
        context.request = MagicMock()
        context.request.get = AsyncMock()
        context.visited = []

        if pages_by_url is None:
            context.new_page = AsyncMock(return_value=page)
            return context

        async def _new_page():
            holder = MagicMock()
            holder.is_closed.return_value = False
            holder.url = ""
            holder.close = AsyncMock(return_value=None)
            holder.wait_for_load_state = AsyncMock(return_value=None)
            delegate: dict = {}

            async def _goto(url, **kwargs):
                for prefix, target in pages_by_url.items():
                    if url.startswith(prefix):
                        context.visited.append(url)
                        delegate["page"] = target
                        holder.url = url
                        return None
                raise AssertionError(f"Unexpected navigation: {url}")

            async def _content():
                return await delegate["page"].content()

            holder.goto = AsyncMock(side_effect=_goto)
            holder.content = AsyncMock(side_effect=_content)
            return holder

        context.new_page = AsyncMock(side_effect=_new_page)
        return context

    return _make


@pytest.fixture
def make_mock_response():
    """Factory for a Playwright APIResponse mock."""

    def _make(
        body: bytes = b"%PDF-1.4",
        *,
        url: str = "https://app.propertymeld.com/files/invoice.pdf",
        status: int = 200,
        status_text: str = "OK",
        headers: dict | None = None,
    ):
        response = MagicMock()
        response.url = url
        response.ok = 200 <= status < 300
        response.status = status
        response.status_text = status_text
        response.headers = headers or {}
        response.body = AsyncMock(return_value=body)
        return response

    return _make


# =============================================================================
# HTML fixtures
# =============================================================================


@pytest.fixture
def unit_detail_html() -> str:
    """A Work App unit detail page with every summary field present."""
    return """
    <html><body>
      <h1>100 Main St Unit 2</h1>
      <table>
        <caption>Tenant Information</caption>
        <tr><th>Name</th><th>Home Phone</th><th>Work Phone</th>
            <th>Mobile Phone</th><th>Email</th></tr>
        <tr><td>Jane Doe</td><td>555-1111</td><td></td><td></td><td>jane@x.com</td></tr>
        <tr><td></td><td>555-9999</td><td></td><td></td><td></td></tr>
      </table>
      <table>
        <tr><td>Secure Building Entry?</td><td>Yes</td></tr>
        <tr><td>Security System Present?</td><td>No</td></tr>
        <tr><td>Security Instructions</td><td>Call ahead<br>Ring twice</td></tr>
        <tr><td>Key Number</td><td>K-12</td></tr>
        <tr><td>Lock Box Location</td><td>Back door</td></tr>
        <tr><td>Lock Box Number</td><td>7</td></tr>
        <tr><td>Lock Box Code</td><td>4321</td></tr>
        <tr><td>Water Cut-Off Location</td><td>Basement</td></tr>
        <tr><td>Breaker Box Location</td><td>Garage</td></tr>
        <tr><td>Water Heater Type</td><td>Gas</td></tr>
        <tr><td>Water Heater LOCATION ONLY</td><td>Closet</td></tr>
        <tr><td>Heat Type</td><td>Forced air</td></tr>
        <tr><td>Year Property Built</td><td>1978</td></tr>
        <tr><td>Sq Ft Above Grade</td><td>1200</td></tr>
        <tr><td>Sq Ft Below Grade</td><td>400</td></tr>
        <tr><td>Num Bedrooms</td><td>3</td></tr>
        <tr><td>Num Bathrooms</td><td>2</td></tr>
        <tr><td>Flooring</td><td>Carpet<br>Tile in kitchen</td></tr>
        <tr><td>Appliances</td><td>Fridge, stove</td></tr>
        <tr><td>Carbon Monoxide Detector Required</td><td>Yes</td></tr>
        <tr><td>Smoke Detector Location</td><td>Hallway</td></tr>
        <tr><td>Air Filter -Sizes and Locations</td><td>16x25 hall</td></tr>
        <tr><td>Driving Directions</td><td>Left at the light</td></tr>
      </table>
    </body></html>
    """


@pytest.fixture
def payment_summary_html() -> str:
    """A rendered Unit App payment summary page."""
    return f"""
    <html><body>
      <div data-testid="invoice-detail-meld-number"><button>123</button></div>
      <a class="euiLink" href="/{ORG}/invoices/55/download/">Download</a>
    </body></html>
    """
