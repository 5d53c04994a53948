"""Built-in data category reference data"""
from carekeep.consent.models import DataCategory, Sensitivity

DEMOGRAPHIC = DataCategory(
    category="demographic",
    description="Basic patient information",
    examples=("Name", "Date of birth", "Address", "Phone number"),
    sensitivity=Sensitivity.LOW,
    requires_explicit_consent=False,
)

MEDICAL_HISTORY = DataCategory(
    category="medical_history",
    description="Medical history and conditions",
    examples=("Diagnoses", "Medications", "Allergies", "Family history"),
    sensitivity=Sensitivity.HIGH,
    requires_explicit_consent=True,
)

TREATMENT_PLANS = DataCategory(
    category="treatment_plans",
    description="Current and past treatment plans",
    examples=("Medications", "Procedures", "Therapies", "Follow-up care"),
    sensitivity=Sensitivity.HIGH,
    requires_explicit_consent=True,
)

LAB_RESULTS = DataCategory(
    category="lab_results",
    description="Laboratory test results",
    examples=("Blood tests", "Imaging", "Pathology", "Vital signs"),
    sensitivity=Sensitivity.MEDIUM,
    requires_explicit_consent=True,
)

BILLING = DataCategory(
    category="billing",
    description="Financial and insurance information",
    examples=("Insurance details", "Payment history", "Claims", "Costs"),
    sensitivity=Sensitivity.MEDIUM,
    requires_explicit_consent=False,
)

DEFAULT_CATEGORIES: dict[str, DataCategory] = {
    c.category: c
    for c in (DEMOGRAPHIC, MEDICAL_HISTORY, TREATMENT_PLANS, LAB_RESULTS, BILLING)
}


def lookup(category: str) -> DataCategory | None:
    return DEFAULT_CATEGORIES.get(category)
