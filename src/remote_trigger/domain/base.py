"""Pydantic bases shared by configuration, server and build records."""

from __future__ import annotations

from typing import Any, Self

from pydantic import BaseModel, ConfigDict


class DomainModel(BaseModel):
    """Immutable value with strict validation; safe to share between tasks."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_assignment=True)

    def revalidated(self, **changes: Any) -> Self:
        """Copy with ``changes`` applied, re-running every validator.

        ``model_copy(update=...)`` skips validation, which would let a
        transition produce a record that breaks its own invariants.
        """

        return type(self).model_validate({**self.model_dump(), **changes})


class MutableDomainModel(BaseModel):
    """Mutable counterpart for records that advance in place, such as handles."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)
