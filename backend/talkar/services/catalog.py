"""
Subject metadata and user preference lookups.

Both are backed by YAML files under config_dir and consulted by the
orchestrator through the auxiliary cache namespaces.
"""

import logging

from pydantic import ValidationError as PydanticValidationError

from talkar.config import Settings, load_preferences_config, load_subjects_config
from talkar.models.schemas import SubjectMetadata, UserPreferences

logger = logging.getLogger(__name__)


class SubjectCatalog:
    """
    Subject (product/poster) metadata catalog.

    Example:
        catalog = SubjectCatalog.from_settings(settings)
        subject = await catalog.get_subject_metadata("sunrich-001")
        print(subject.name if subject else "unknown")
    """

    def __init__(self, subjects: list[SubjectMetadata] | None = None):
        self._subjects = {s.subject_ref.casefold(): s for s in subjects or []}

    @classmethod
    def from_settings(cls, settings: Settings) -> "SubjectCatalog":
        """Load the catalog from config/subjects.yaml, skipping invalid entries."""
        subjects = []
        for raw in load_subjects_config(settings):
            try:
                subjects.append(SubjectMetadata.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid subject entry {raw.get('subject_ref')}: {e}")
        logger.info(f"Loaded {len(subjects)} subjects")
        return cls(subjects)

    async def get_subject_metadata(self, subject_ref: str) -> SubjectMetadata | None:
        """
        Look up metadata of a subject.

        Args:
            subject_ref: Subject identifier (case-insensitive)

        Returns:
            SubjectMetadata or None if unknown
        """
        return self._subjects.get(subject_ref.strip().casefold())

    def __len__(self) -> int:
        return len(self._subjects)


class PreferencesSource:
    """Default user preferences from config/preferences.yaml."""

    def __init__(
        self,
        defaults: UserPreferences | None = None,
        users: dict[str, UserPreferences] | None = None,
    ):
        self.defaults = defaults or UserPreferences()
        self.users = users or {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "PreferencesSource":
        data = load_preferences_config(settings)
        defaults = UserPreferences.model_validate(data.get("defaults") or {})
        users = {
            user_id: UserPreferences.model_validate({**defaults.model_dump(), **(prefs or {})})
            for user_id, prefs in (data.get("users") or {}).items()
        }
        return cls(defaults, users)

    async def get_user_preferences(self, user_id: str | None = None) -> UserPreferences:
        """
        Preferences of a user, or the defaults.

        Args:
            user_id: Optional user identifier

        Returns:
            UserPreferences (never None)
        """
        if user_id and user_id in self.users:
            return self.users[user_id]
        return self.defaults
