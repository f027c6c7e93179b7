"""
Document Requirement Registry.

The static FAI checklist: which document kinds a package may carry and which
of them are mandatory. Defined once at import time and never mutated, so it
is shared across requests and the background analysis without locking.
"""
from dataclasses import dataclass
from typing import Dict, List, Tuple

from faiportal.db.schema import DocType


@dataclass(frozen=True)
class DocumentRequirement:
    type: DocType
    mandatory: bool
    description: str


DOCUMENT_REQUIREMENTS: Tuple[DocumentRequirement, ...] = (
    DocumentRequirement(DocType.ENGINEERING_DRAWING, True, "Including annotation/numbering of features"),
    DocumentRequirement(DocType.PROCESS_MANAGEMENT_PLAN, True, "Full manufacturing process flow"),
    DocumentRequirement(DocType.FAI_REPORT_SUPPLIER, True, "Initial measurement data"),
    DocumentRequirement(DocType.MATERIAL_CERT, True, "Material Certification and CoC"),
    DocumentRequirement(DocType.ROHS_DECLARATION, True, "RoHS Compliance status"),
    DocumentRequirement(DocType.PACKAGING_REQ, True, "Defined requirements for shipping"),
    DocumentRequirement(DocType.CLEANLINESS_REPORT, False, "IC, NVR, FTIR, Flatness (When required)"),
    DocumentRequirement(DocType.REACH_COMPLIANCE, False, "REACH Compliance status (If applicable)"),
    DocumentRequirement(DocType.BOM, False, "Bill of Materials List (If applicable)"),
)

_BY_TYPE: Dict[DocType, DocumentRequirement] = {r.type: r for r in DOCUMENT_REQUIREMENTS}


def list_requirements() -> Tuple[DocumentRequirement, ...]:
    return DOCUMENT_REQUIREMENTS


def get_requirement(doc_type: DocType) -> DocumentRequirement:
    """Raises ValueError for a type outside the catalog (a caller error)."""
    return _BY_TYPE[DocType(doc_type)]


def is_mandatory(doc_type: DocType) -> bool:
    return get_requirement(doc_type).mandatory


def mandatory_types() -> List[DocType]:
    return [r.type for r in DOCUMENT_REQUIREMENTS if r.mandatory]
