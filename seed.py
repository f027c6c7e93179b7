from datetime import timedelta

from loguru import logger
from sqlmodel import Session

from faiportal.core.audit import record_transition
from faiportal.db.core import engine, init_db
from faiportal.db.schema import (
    ActorRole, DocType, RejectionSource, Submission, SubmissionDocument, SubmissionStatus, utc_now
)
from faiportal.services.requirements import is_mandatory

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# 1. Demo packages, timestamps relative to now
DEMO_SUBMISSIONS = [
    {
        "id": "SUB-10025",
        "supplier_name": "ABC Manufacturing",
        "part_number": "MOD-441-B",
        "revision": "02",
        "age": timedelta(hours=2),
        "status": SubmissionStatus.PENDING_REVIEW,
        "files": [
            ("f1", DocType.ENGINEERING_DRAWING, "DWG-441B.pdf", "application/pdf"),
            ("f2", DocType.FAI_REPORT_SUPPLIER, "FAI_Report_441B.xlsx", XLSX),
        ],
        "ai_analysis": {
            "overallVerdict": "APPROVED",
            "summary": "Critical dimensions on Engineering Drawing match FAI data points. CPK > 1.33.",
            "details": [
                {"docType": "Engineering Drawing", "result": "PASS", "notes": "Features correctly ballooned"},
                {"docType": "FAI Report (Supplier)", "result": "PASS", "notes": "All dimensions within 20% of center"},
            ],
        },
    },
    {
        "id": "SUB-10026",
        "supplier_name": "Tech Components Ltd.",
        "part_number": "CPU-V1-XT",
        "revision": "01",
        "age": timedelta(hours=5),
        "status": SubmissionStatus.APPROVED,
        "iqa_remarks": "Excellent submission. Material certification is clear and dimensions are well within tolerance limits.",
        "files": [
            ("f3", DocType.ENGINEERING_DRAWING, "CPU-V1.pdf", "application/pdf"),
            ("f4", DocType.MATERIAL_CERT, "MAT_CERT_001.pdf", "application/pdf"),
        ],
        "ai_analysis": {
            "overallVerdict": "APPROVED",
            "summary": "Full documentation set provided. Batch numbers match material certificate.",
            "details": [
                {"docType": "Material Certification & CoC", "result": "PASS", "notes": "Verified authentic"},
            ],
        },
    },
    {
        "id": "SUB-10028",
        "supplier_name": "Tech Components Ltd.",
        "part_number": "PSU-750W",
        "revision": "C",
        "age": timedelta(days=1.5),
        "status": SubmissionStatus.REJECTED,
        "iqa_remarks": "Missing REACH compliance document. Dimension 4.2 in the FAI report exceeds drawing "
                       "tolerance by 0.05mm. Please revise and resubmit.",
        "rejection_source": RejectionSource.REVIEWER,
        "is_new_verdict": True,
        "files": [
            ("f5", DocType.ENGINEERING_DRAWING, "PSU_DRAWING.png", "image/png"),
            ("f6", DocType.FAI_REPORT_SUPPLIER, "DATA.xlsx", XLSX),
        ],
        "ai_analysis": {
            "overallVerdict": "REJECTED",
            "summary": "Mandatory environmental documents missing. Potential out of spec dimension identified.",
            "details": [
                {"docType": "REACH Compliance", "result": "FAIL", "notes": "Artifact not found"},
            ],
        },
    },
    {
        "id": "SUB-10029",
        "supplier_name": "ABC Manufacturing",
        "part_number": "BRACKET-X",
        "revision": "03",
        "age": timedelta(days=2),
        "status": SubmissionStatus.APPROVED,
        "iqa_remarks": "Dimensions verified. Cleanliness report meets the new ISO requirements. Approved for production.",
        "files": [],
        "ai_analysis": {
            "overallVerdict": "APPROVED",
            "summary": "Simple geometry verified against master drawing.",
            "details": [
                {"docType": "Engineering Drawing", "result": "PASS", "notes": "Features verified"},
            ],
        },
    },
    {
        "id": "SUB-10030",
        "supplier_name": "Tech Components Ltd.",
        "part_number": "SENSOR-H",
        "revision": "A2",
        "age": timedelta(days=3),
        "status": SubmissionStatus.PENDING_REVIEW,
        "files": [],
        "ai_analysis": {
            "overallVerdict": "APPROVED",
            "summary": "Calibration data looks accurate. Suggest approval.",
            "details": [
                {"docType": "FAI Report (Supplier)", "result": "PASS", "notes": "Data points aligned"},
            ],
        },
    },
]


def seed_submissions(session: Session):
    """Creates the demo packages if they don't exist. Documents carry metadata only."""
    logger.info("--- Seeding Submissions ---")
    now = utc_now()

    for data in DEMO_SUBMISSIONS:
        if session.get(Submission, data["id"]):
            logger.info(f"Existing Submission: {data['id']}")
            continue

        submission = Submission(
            id=data["id"],
            supplier_name=data["supplier_name"],
            part_number=data["part_number"],
            revision=data["revision"],
            timestamp=now - data["age"],
            status=data["status"],
            iqa_remarks=data.get("iqa_remarks"),
            is_new_verdict=data.get("is_new_verdict", False),
            rejection_source=data.get("rejection_source"),
            ai_analysis=data["ai_analysis"],
            created_by="seed"
        )
        session.add(submission)

        for doc_id, doc_type, name, mime_type in data["files"]:
            session.add(SubmissionDocument(
                id=doc_id,
                submission_id=submission.id,
                doc_type=doc_type,
                name=name,
                mime_type=mime_type,
                last_modified=int(now.timestamp() * 1000),
                is_mandatory=is_mandatory(doc_type)
            ))

        record_transition(
            session,
            submission_id=submission.id,
            from_status=None,
            to_status=submission.status,
            actor_role=ActorRole.SYSTEM,
            actor_id="seed",
            note="demo data"
        )
        logger.info(f"Created Submission: {submission.id} ({submission.status.value})")


def main():
    # Ensure tables exist
    init_db()

    with Session(engine) as session:
        try:
            seed_submissions(session)

            session.commit()
            logger.info("Database seeding completed successfully.")

        except Exception as e:
            session.rollback()
            logger.error(f"Seeding failed: {e}")
            raise e


if __name__ == "__main__":
    main()
