"""Consent Lifecycle - versioned, scoped, time-bounded patient consent"""
from carekeep.consent.catalog import DEFAULT_CATEGORIES
from carekeep.consent.models import (
    ConsentFlags,
    ConsentRequest,
    ConsentScope,
    ConsentStatus,
    ConsentType,
    ConsentVerification,
    DataCategory,
    GeographicScope,
    PatientConsent,
    Sensitivity,
)
from carekeep.consent.store import ConsentStore

__all__ = [
    "ConsentStore",
    "PatientConsent",
    "ConsentType",
    "ConsentStatus",
    "ConsentScope",
    "ConsentFlags",
    "ConsentRequest",
    "ConsentVerification",
    "DataCategory",
    "Sensitivity",
    "GeographicScope",
    "DEFAULT_CATEGORIES",
]
