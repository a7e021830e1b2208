"""FlowTechs dataset preview and extraction service.

Importing the package registers every ORM model, so relationships between
them resolve no matter which module is loaded first.
"""

from app import core, crud, models, schemas
from app.database import AsyncSessionLocal, Base, get_async_db

__version__ = "0.1.0"

__all__ = [
    "AsyncSessionLocal",
    "Base",
    "get_async_db",
    "core",
    "crud",
    "models",
    "schemas",
]
