"""
LifeGraph API Routes Package.

Example:
    from api.routes import graph_router

    app.include_router(graph_router)
"""

from api.routes.graph import router as graph_router


__all__ = [
    "graph_router",
]
