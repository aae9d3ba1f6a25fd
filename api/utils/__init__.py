# LifeGraph API Utilities
"""
Shared utility functions for LifeGraph services.
"""

from api.utils.datetime_utils import make_aware, utc_now, from_iso, to_iso, start_of_day
from api.utils.db_paths import get_graph_db_path

__all__ = ["make_aware", "utc_now", "from_iso", "to_iso", "start_of_day", "get_graph_db_path"]
