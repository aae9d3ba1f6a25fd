"""
Database path utilities for LifeGraph services.
"""
from pathlib import Path

from config.settings import settings


def get_graph_db_path() -> str:
    """
    Get the path to the identity graph database.

    Creates the parent directory if it doesn't exist.

    Returns:
        Path to the graph.db file
    """
    db_path = Path(settings.db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return str(db_path)
