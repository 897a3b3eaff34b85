"""
Error taxonomy for the store and the allergen engines.
The HTTP layer maps each type to a status code; nothing here retries.
"""
from typing import Optional, Sequence


class AllergyCheckError(Exception):
    """Base for all errors raised by the kitchen core."""


class ValidationError(AllergyCheckError):
    """Missing or malformed field, rejected before any store call (e.g. empty name, unknown allergen)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UniquenessViolation(AllergyCheckError):
    """Duplicate name for an entity kind. No partial write has happened."""

    def __init__(self, kind: str, name: str):
        super().__init__(
            f'A {kind.replace("_", " ")} named "{name}" already exists. '
            "Please use a different name or edit the existing one."
        )
        self.kind = kind
        self.name = name


class ReferentialIntegrityError(AllergyCheckError):
    """
    Foreign-key conflict. On delete: composition links still reference the entity.
    On any other write: the row points at a record that no longer exists.
    """

    def __init__(self, kind: str, entity_id: str, referenced_by: Sequence[str] = (), action: str = "delete"):
        if action == "delete":
            where = ", ".join(referenced_by) or "other records"
            message = f"Cannot delete {kind.replace('_', ' ')} {entity_id}: it is in use by {where}."
        else:
            message = f"Cannot {action} {kind.replace('_', ' ')}: it refers to a record that no longer exists."
        super().__init__(message)
        self.kind = kind
        self.entity_id = entity_id
        self.referenced_by = list(referenced_by)
        self.action = action


class CycleDetected(AllergyCheckError):
    """Component nesting loops back on itself. Data-integrity fault, aggregation halted."""

    def __init__(self, path: Sequence[str]):
        super().__init__("Component cycle detected: " + " -> ".join(path))
        self.path = list(path)


class EntityNotFound(AllergyCheckError):
    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind.replace('_', ' ')} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class TransientStoreError(AllergyCheckError):
    """Store unreachable or failed mid-request. Reported as failed; the user retries manually."""
