"""
Connectivity signal used to choose between a direct write and the offline queue.
Uses stdlib urllib.request for the HEAD probe.
"""

import logging
import urllib.error
import urllib.request

from shared.config import CONNECTIVITY_PROBE_URL, CONNECTIVITY_TIMEOUT, FORCE_OFFLINE

logger = logging.getLogger(__name__)


def is_online(probe_url: str = CONNECTIVITY_PROBE_URL, timeout: float = CONNECTIVITY_TIMEOUT,
              force_offline: bool = FORCE_OFFLINE) -> bool:
    """
    HEAD the probe URL; any HTTP answer counts as online.
    With no probe URL configured the backend is assumed reachable.
    """
    if force_offline:
        return False
    if not probe_url:
        return True
    req = urllib.request.Request(probe_url, method="HEAD")
    try:
        with urllib.request.urlopen(req, timeout=timeout):
            return True
    except urllib.error.HTTPError:
        # Server answered, just not with 2xx
        return True
    except (urllib.error.URLError, OSError) as e:
        logger.warning(f"[OFFLINE] Connectivity probe to {probe_url} failed: {e}")
        return False
