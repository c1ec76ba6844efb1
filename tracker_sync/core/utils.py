"""
Utilities and helper functions for the Tracker Sync Service.
"""

import logging
import re
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class DateTimeHelper:
    """Utilities for date and time manipulation."""

    @staticmethod
    def parse_jira_datetime_to_naive_utc(datetime_str: str) -> Optional[datetime]:
        """
        Parse a tracker datetime string to timezone-naive UTC datetime.

        Handles the Jira format ('2023-01-01T12:00:00.000+0000'), the Azure
        DevOps format ('2023-01-01T12:00:00.123Z') and plain dates.

        Args:
            datetime_str: Tracker datetime string

        Returns:
            Timezone-naive UTC datetime or None if parsing fails
        """
        if not datetime_str:
            return None

        try:
            value = datetime_str.strip().replace('Z', '+00:00')
            # Jira omits the colon in its offset (+0000)
            match = re.search(r'([+-])(\d{2})(\d{2})$', value)
            if match:
                value = value[:match.start()] + f"{match.group(1)}{match.group(2)}:{match.group(3)}"
            # fromisoformat only accepts 3 or 6 fractional digits before 3.11
            value = re.sub(r'\.(\d{1,6})\d*', lambda m: '.' + m.group(1).ljust(6, '0'), value)

            dt = datetime.fromisoformat(value)
            if dt.tzinfo is not None:
                dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
            return dt
        except (TypeError, ValueError) as e:
            logger.warning(f"Could not parse datetime '{datetime_str}': {e}")
            return None

    @staticmethod
    def now_utc() -> datetime:
        """
        Get current datetime as timezone-naive UTC.

        Returns:
            Current datetime in timezone-naive UTC format
        """
        return datetime.now(timezone.utc).replace(tzinfo=None)

    @staticmethod
    def hours_from_now(hours: float) -> datetime:
        return DateTimeHelper.now_utc() + timedelta(hours=hours)

    @staticmethod
    def to_iso_string(dt: Optional[datetime]) -> Optional[str]:
        """Convert datetime to ISO format string (None passes through)."""
        if dt is None:
            return None
        return dt.isoformat()

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Formats duration in seconds to readable string."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            return f"{seconds / 60:.1f}m"
        return f"{seconds / 3600:.1f}h"


class DataValidator:
    """Utilities for data validation."""

    @staticmethod
    def is_valid_url(url: str) -> bool:
        """Validates that a string is an http(s) URL."""
        if not url:
            return False
        pattern = r'^https?://[^\s/$.?#].[^\s]*$'
        return bool(re.match(pattern, url))

    @staticmethod
    def normalize_base_url(url: str) -> str:
        """Strips whitespace and trailing slashes from a tracker base URL."""
        return (url or "").strip().rstrip('/')

    @staticmethod
    def parse_project_keys(value: Any) -> List[str]:
        """
        Normalizes project keys from a comma-separated string or a list.

        Blank entries are dropped, keys are stripped, order is preserved and
        duplicates removed.
        """
        if value is None:
            return []
        if isinstance(value, str):
            candidates = value.split(',')
        else:
            candidates = list(value)

        keys = []
        for candidate in candidates:
            key = str(candidate).strip()
            if key and key not in keys:
                keys.append(key)
        return keys


def chunk_list(lst: List, chunk_size: int) -> List[List]:
    """Divides a list into smaller chunks."""
    return [lst[i:i + chunk_size] for i in range(0, len(lst), chunk_size)]


class ConfigHelper:
    """Configuration utilities."""

    @staticmethod
    def mask_sensitive_data(data: Dict, sensitive_keys: List[str] = None) -> Dict:
        """Masks sensitive data in dictionaries for logging."""
        if sensitive_keys is None:
            sensitive_keys = ['password', 'token', 'key', 'secret', 'credential']

        masked_data = data.copy()

        for key, value in masked_data.items():
            if any(sensitive_key.lower() in key.lower() for sensitive_key in sensitive_keys):
                if isinstance(value, str) and len(value) > 4:
                    masked_data[key] = value[:2] + '*' * (len(value) - 4) + value[-2:]
                else:
                    masked_data[key] = '***'

        return masked_data
