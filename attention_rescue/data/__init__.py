from .database import Database
from .models import BrowsingContext, SiteClassification, StreakRecord, UserProgress, UserSettings
from .repository import Repository

__all__ = ["Database", "BrowsingContext", "SiteClassification", "StreakRecord",
           "UserProgress", "UserSettings", "Repository"]
