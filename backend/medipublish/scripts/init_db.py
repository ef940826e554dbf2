"""
Create the CME tables and load the specialty requirement reference data.

Run from backend/:

    source .venv/bin/activate
    python -m medipublish.scripts.init_db
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from medipublish.database import SessionLocal, init_db
from medipublish.models.requirement import SpecialtyRequirement, SpecialtyRequirementCategory


# ---------------------------------------------------------------------
# Static reference data: annual requirement, accepted credit types and
# category minimums per specialty
# ---------------------------------------------------------------------
SPECIALTY_REQUIREMENTS: List[Dict[str, Any]] = [
    {
        "specialty": "Internal Medicine",
        "required_credits": 50,
        "accepted_credit_types": ["AMA_PRA_1", "AMA_PRA_2"],
        "categories": {"AMA_PRA_1": 25},
    },
    {
        "specialty": "Surgery",
        "required_credits": 50,
        "accepted_credit_types": ["AMA_PRA_1"],
        "categories": {"AMA_PRA_1": 40},
    },
    {
        "specialty": "Pediatrics",
        "required_credits": 40,
        "accepted_credit_types": ["AMA_PRA_1", "AMA_PRA_2", "AAFP"],
        "categories": {"AMA_PRA_1": 20},
    },
    {
        "specialty": "Emergency Medicine",
        "required_credits": 50,
        "accepted_credit_types": ["AMA_PRA_1", "ACEP"],
        "categories": {"AMA_PRA_1": 35},
    },
    {
        "specialty": "Family Medicine",
        "required_credits": 50,
        "accepted_credit_types": ["AMA_PRA_1", "AAFP"],
        "categories": {"AMA_PRA_1": 25},
    },
]


def ensure_specialty_requirements(db: Session, rows: Optional[List[Dict[str, Any]]] = None) -> int:
    """Insert requirement rows that are missing. Existing specialties are left alone."""
    existing = {r.specialty for r in db.query(SpecialtyRequirement.specialty).all()}
    inserted = 0

    for row in rows or SPECIALTY_REQUIREMENTS:
        if row["specialty"] in existing:
            continue
        requirement = SpecialtyRequirement(
            specialty=row["specialty"],
            required_credits=Decimal(str(row["required_credits"])),
            cycle_years=row.get("cycle_years", 1),
            accepted_credit_types=list(row.get("accepted_credit_types", [])),
            categories=[
                SpecialtyRequirementCategory(category=name, minimum_credits=Decimal(str(minimum)))
                for name, minimum in row.get("categories", {}).items()
            ],
        )
        db.add(requirement)
        inserted += 1

    db.commit()
    return inserted


def main():
    print("→ Creating tables...")
    init_db()

    db = SessionLocal()
    try:
        inserted = ensure_specialty_requirements(db)
        print(f"   Inserted {inserted} specialty requirement rows.")
    finally:
        db.close()

    print("Database ready.")


if __name__ == "__main__":
    main()
