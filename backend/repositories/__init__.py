from .usage import UsageRepository
from . import models

__all__ = ["UsageRepository", "models"]
