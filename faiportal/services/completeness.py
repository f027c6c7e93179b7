from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from faiportal.services.requirements import DocumentRequirement, list_requirements


@dataclass
class CompletenessReport:
    is_complete: bool
    missing: List[DocumentRequirement] = field(default_factory=list)
    provided_mandatory: int = 0
    total_mandatory: int = 0

    @property
    def missing_types(self) -> List[str]:
        return [r.type.value for r in self.missing]


def _type_of(document) -> object:
    # Accepts ORM documents (doc_type) and upload DTOs (type)
    return getattr(document, "doc_type", None) or getattr(document, "type", None)


def evaluate(
    files: Iterable,
    requirements: Optional[Sequence[DocumentRequirement]] = None,
) -> CompletenessReport:
    """
    Checks mandatory coverage of a document set.

    A mandatory requirement is covered only when exactly one document carries
    exactly its type. No case or punctuation normalization is applied.
    """
    requirements = list_requirements() if requirements is None else requirements
    types = [_type_of(f) for f in files]

    missing = []
    mandatory = [r for r in requirements if r.mandatory]
    for requirement in mandatory:
        matches = sum(1 for t in types if t == requirement.type)
        if matches != 1:
            missing.append(requirement)

    return CompletenessReport(
        is_complete=not missing,
        missing=missing,
        provided_mandatory=len(mandatory) - len(missing),
        total_mandatory=len(mandatory),
    )
