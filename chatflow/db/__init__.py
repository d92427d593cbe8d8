from .entity_db import SQLEntityRepository
from .models import DraftRecord

__all__ = [
    "DraftRecord",
    "SQLEntityRepository",
]
