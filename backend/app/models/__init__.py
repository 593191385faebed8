"""Models package."""
from app.models.website import Website
from app.models.website_file import WebsiteFile
from app.models.change_history import ChangeHistory

__all__ = ["Website", "WebsiteFile", "ChangeHistory"]
