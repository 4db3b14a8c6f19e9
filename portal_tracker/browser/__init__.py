"""Browser module: Playwright session lifecycle and portal scraping."""

from .scraper import PortalScraper, SessionLostError, format_permissions, is_session_lost_error
from .session_manager import BrowserUnavailableError, SessionManager

__all__ = [
    "PortalScraper",
    "SessionLostError",
    "format_permissions",
    "is_session_lost_error",
    "BrowserUnavailableError",
    "SessionManager",
]
