"""
Person Resolver API Routes Package.

Example:
    from api.routes import people_router

    app.include_router(people_router)
"""

from api.routes.people import router as people_router


__all__ = [
    "people_router",
]
