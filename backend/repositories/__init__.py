from .visited import VisitedRepository
from . import models

__all__ = ["VisitedRepository", "models"]
