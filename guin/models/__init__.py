# guin/models/__init__.py
# Central import surface for SQLModel table registration.
# Keeping these imports ensures migrate() sees all models and creates tables.

from .service_start import ServiceStart

__all__ = [
    "ServiceStart",
]
