# qbsync Remote Scope
# Immutable description of which part of the question bank a call targets

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

from qbsync.errors import ConfigError


class ContextLevel(str, Enum):
    """Moodle context a question bank lives in."""

    SYSTEM = "system"
    COURSE_CATEGORY = "coursecategory"
    COURSE = "course"
    MODULE = "module"

    @property
    def code(self) -> int:
        """Moodle's internal context level number."""
        return _CONTEXT_CODES[self]

    @classmethod
    def from_code(cls, code: int | str) -> "ContextLevel":
        """Look up a level from Moodle's number (or its name)."""
        for level, value in _CONTEXT_CODES.items():
            if str(value) == str(code) or level.value == code:
                return level
        raise ConfigError(f"Context level '{code}' is not valid.")


_CONTEXT_CODES = {
    ContextLevel.SYSTEM: 10,
    ContextLevel.COURSE_CATEGORY: 40,
    ContextLevel.COURSE: 50,
    ContextLevel.MODULE: 70,
}


@dataclass(frozen=True)
class Scope:
    """
    Request value identifying a question bank context and category.

    Built once from configuration and copied with overrides per call, never
    mutated.
    """

    context_level: ContextLevel
    course_name: Optional[str] = None
    module_name: Optional[str] = None
    course_category: Optional[str] = None
    instance_id: Optional[str] = None
    category_name: Optional[str] = None
    category_id: Optional[str] = None

    def replace(self, **changes: Any) -> "Scope":
        """Copy of this scope with some fields changed."""
        return replace(self, **changes)

    def whole_context(self) -> "Scope":
        """Same context with the category filter cleared."""
        return replace(self, category_name=None, category_id=None)

    def validate(self) -> "Scope":
        """
        Check the scope names enough to identify its context.

        Returns:
            The scope itself.

        Raises:
            ConfigError: If required names are missing or superfluous.
        """
        level = self.context_level
        has_instance = bool(self.instance_id)

        if level == ContextLevel.SYSTEM:
            if self.course_name or self.module_name or self.course_category or has_instance:
                raise ConfigError(
                    "You have specified system level context. Instance id, course name, "
                    "module name and/or course category are not needed."
                )
        elif level == ContextLevel.COURSE_CATEGORY:
            if self.course_name or self.module_name:
                raise ConfigError(
                    "You have specified course category level context. Course name and/or module name are not needed."
                )
            if not self.course_category and not has_instance:
                raise ConfigError(
                    "You have specified course category level context. "
                    "You must specify the category name or its Moodle id."
                )
        elif level == ContextLevel.COURSE:
            if self.course_category or self.module_name:
                raise ConfigError(
                    "You have specified course level context. Course category name and/or module name are not needed."
                )
            if not self.course_name and not has_instance:
                raise ConfigError(
                    "You have specified course level context. You must specify the full course name or its Moodle id."
                )
        elif level == ContextLevel.MODULE:
            if self.course_category:
                raise ConfigError("You have specified module level context. Course category name is not needed.")
            if (not self.course_name or not self.module_name) and not has_instance:
                raise ConfigError(
                    "You have specified module level context. You must specify the full course name "
                    "and module name or give the module Moodle id."
                )
        if self.category_name and self.category_id:
            raise ConfigError("Use either a question category name or a question category id, not both.")
        return self

    def to_params(self) -> dict[str, Any]:
        """Webservice parameters describing this scope."""
        return {
            "contextlevel": self.context_level.code,
            "coursename": self.course_name or "",
            "modulename": self.module_name or "",
            "coursecategory": self.course_category or "",
            "instanceid": self.instance_id or "",
            "qcategoryname": self.category_name or "",
            "qcategoryid": self.category_id or "",
        }

    def context_fields(self) -> dict[str, Any]:
        """Denormalized scope stored with manifest entries."""
        return {
            "contextlevel": self.context_level.code,
            "coursename": self.course_name,
            "modulename": self.module_name,
            "coursecategory": self.course_category,
            "instanceid": self.instance_id,
            "qcategoryname": self.category_name,
        }
