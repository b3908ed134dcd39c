"""ORM models; importing this package registers every table on `Base.metadata`."""

from .books import BookPage, ColoringBook
from .jobs import ExportJob, GenerationJob

__all__ = ["BookPage", "ColoringBook", "ExportJob", "GenerationJob"]
