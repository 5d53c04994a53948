"""Consent Store - versioned, scoped, time-bounded patient consent"""
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable, Mapping

import structlog

from carekeep.access.roles import Capability, RoleTable, default_role_table
from carekeep.audit.models import AuditEntry, AuditResult, RiskLevel
from carekeep.audit.recorder import AuditRecorder
from carekeep.clock import ClockSource
from carekeep.config import ConsentSettings
from carekeep.consent.catalog import DEFAULT_CATEGORIES, lookup
from carekeep.consent.models import (
    ConsentFlags, ConsentRequest, ConsentScope, ConsentStatus, ConsentSummary, ConsentType,
    ConsentVerification, DataCategory, PatientConsent, Sensitivity, can_transition,
)
from carekeep.errors import ConsentNotFoundError, InvalidStateError, ValidationError
from carekeep.identity import Principal
from carekeep.locks import KeyedLocks
from carekeep.scheduling import PeriodicTask
from carekeep.storage import Repository

logger = structlog.get_logger(__name__)

CONSENT_COLLECTION = "patient_consents"
RESOURCE_TYPE = "patient_consent"
SYSTEM_PRINCIPAL = Principal(id="system", role="system")


class ConsentStore:
    """
    Owns the PatientConsent lifecycle.

    Mutations on one (patient_id, consent_type) key are serialized by a
    per-key lock; reads return the last committed snapshot without
    locking. Every mutation appends exactly one audit event, success or
    failure.
    """

    def __init__(
        self,
        audit: AuditRecorder,
        clock: ClockSource,
        repository: Repository | None = None,
        settings: ConsentSettings | None = None,
        categories: Mapping[str, DataCategory] | None = None,
        roles: RoleTable | None = None,
    ):
        self._audit = audit
        self._clock = clock
        self._repository = repository
        self._settings = settings or ConsentSettings()
        self._categories = dict(categories or DEFAULT_CATEGORIES)
        self._roles = roles or default_role_table()
        self._locks = KeyedLocks()
        self._consents: dict[str, PatientConsent] = {}
        self._by_key: dict[tuple[str, ConsentType], list[str]] = {}

    # ==================== MUTATIONS ====================

    async def create(
        self,
        patient_id: str,
        consent_type: ConsentType | str,
        data_categories: Iterable[DataCategory | str],
        scope: ConsentScope,
        flags: ConsentFlags | None = None,
        actor: Principal = SYSTEM_PRINCIPAL,
        correlation_id: str | None = None,
    ) -> str:
        """Create a pending consent and return its id."""
        flags = flags or ConsentFlags()
        try:
            ctype, categories = self._validate_create(
                patient_id, consent_type, data_categories, scope, flags
            )
        except ValidationError as e:
            self._record("consent.create", actor, patient_id or "", AuditResult.FAILURE,
                         correlation_id, error=e.message, patient_id=patient_id)
            raise

        key = (patient_id, ctype)
        async with self._locks.hold(key):
            # Versions already persisted by another store instance count too
            await self.hydrate(patient_id)
            now = self._clock.now()
            consent = PatientConsent(
                id=f"CNS-{uuid.uuid4().hex[:12].upper()}",
                patient_id=patient_id,
                consent_type=ctype,
                version=self._max_version(key) + 1,
                status=ConsentStatus.PENDING,
                data_categories=categories,
                scope=scope,
                created_by=actor.id,
                created_at=now,
                updated_at=now,
                third_party_sharing=flags.third_party_sharing,
                marketing_consent=flags.marketing_consent,
                research_consent=flags.research_consent,
            )
            try:
                await self._persist(consent)
            except Exception as e:
                self._record("consent.create", actor, consent.id, AuditResult.FAILURE,
                             correlation_id, error=str(e), patient_id=patient_id)
                raise
            self._commit(consent)
            self._record("consent.create", actor, consent.id, AuditResult.SUCCESS,
                         correlation_id, patient_id=patient_id,
                         consent_type=ctype.value, version=consent.version)

        logger.info("Consent created", consent_id=consent.id, patient_id=patient_id,
                    consent_type=ctype.value, version=consent.version)
        return consent.id

    async def grant(self, consent_id: str, actor: Principal = SYSTEM_PRINCIPAL,
                    correlation_id: str | None = None) -> PatientConsent:
        def apply(c: PatientConsent, now: datetime) -> PatientConsent:
            return replace(c, status=ConsentStatus.GRANTED, granted_at=now,
                           expires_at=now + c.scope.duration,
                           updated_at=now, updated_by=actor.id)

        return await self._transition(
            consent_id, "grant", {ConsentStatus.PENDING}, ConsentStatus.GRANTED,
            apply, actor, correlation_id,
        )

    async def revoke(self, consent_id: str, reason: str, actor: Principal = SYSTEM_PRINCIPAL,
                     correlation_id: str | None = None) -> PatientConsent:
        """Revoke a consent. A second revoke is a caller bug and raises."""
        if not reason or not reason.strip():
            self._record("consent.revoke", actor, consent_id, AuditResult.FAILURE,
                         correlation_id, error="revocation reason is required")
            raise ValidationError("Revocation reason is required", consent_id=consent_id)

        def apply(c: PatientConsent, now: datetime) -> PatientConsent:
            return replace(c, status=ConsentStatus.REVOKED, revoked_at=now,
                           revoked_reason=reason.strip(), updated_at=now, updated_by=actor.id)

        return await self._transition(
            consent_id, "revoke", {ConsentStatus.GRANTED, ConsentStatus.SUSPENDED},
            ConsentStatus.REVOKED, apply, actor, correlation_id, risk=RiskLevel.MEDIUM,
        )

    async def suspend(self, consent_id: str, reason: str, actor: Principal = SYSTEM_PRINCIPAL,
                      correlation_id: str | None = None) -> PatientConsent:
        def apply(c: PatientConsent, now: datetime) -> PatientConsent:
            return replace(c, status=ConsentStatus.SUSPENDED, suspended_reason=reason,
                           updated_at=now, updated_by=actor.id)

        return await self._transition(
            consent_id, "suspend", {ConsentStatus.GRANTED}, ConsentStatus.SUSPENDED,
            apply, actor, correlation_id, risk=RiskLevel.MEDIUM,
        )

    async def reinstate(self, consent_id: str, actor: Principal = SYSTEM_PRINCIPAL,
                        correlation_id: str | None = None) -> PatientConsent:
        """Return a suspended consent to granted. The original expiry stands."""
        def apply(c: PatientConsent, now: datetime) -> PatientConsent:
            return replace(c, status=ConsentStatus.GRANTED, suspended_reason=None,
                           updated_at=now, updated_by=actor.id)

        return await self._transition(
            consent_id, "reinstate", {ConsentStatus.SUSPENDED}, ConsentStatus.GRANTED,
            apply, actor, correlation_id,
        )

    async def expire_sweep(self, now: datetime | None = None) -> list[str]:
        """Expire granted consents whose expiry has passed. Safe to re-run."""
        now = now or self._clock.now()
        expired: list[str] = []
        due = [c for c in self._consents.values()
               if c.status == ConsentStatus.GRANTED and c.expires_at <= now]

        for candidate in due:
            async with self._locks.hold(candidate.key):
                current = self._consents[candidate.id]
                # Re-check under the lock; a revoke may have won the race
                if current.status != ConsentStatus.GRANTED or current.expires_at > now:
                    continue
                updated = replace(current, status=ConsentStatus.EXPIRED,
                                  updated_at=now, updated_by=SYSTEM_PRINCIPAL.id)
                try:
                    await self._persist(updated)
                except Exception as e:
                    self._record("consent.expire", SYSTEM_PRINCIPAL, current.id,
                                 AuditResult.FAILURE, None, error=str(e))
                    logger.error("Consent expiry failed", consent_id=current.id, error=str(e))
                    continue
                self._commit(updated)
                self._record("consent.expire", SYSTEM_PRINCIPAL, current.id,
                             AuditResult.SUCCESS, None, patient_id=current.patient_id,
                             expires_at=current.expires_at.isoformat())
                expired.append(current.id)

        if expired:
            logger.info("Consent expiry sweep", expired=len(expired))
        return expired

    def sweep_task(self, interval_seconds: float | None = None) -> PeriodicTask:
        """Cancelable scheduled expiry sweep on the store's clock."""
        return PeriodicTask(
            "consent-expiry-sweep",
            self.expire_sweep,
            interval_seconds or self._settings.sweep_interval_seconds,
            self._clock,
        )

    # ==================== READS ====================

    def get(self, consent_id: str) -> PatientConsent:
        consent = self._consents.get(consent_id)
        if consent is None:
            raise ConsentNotFoundError(consent_id)
        return consent

    def query(self, patient_id: str,
              consent_type: ConsentType | str | None = None) -> list[PatientConsent]:
        """Consents for a patient, newest version first. Not audited."""
        if consent_type is not None:
            try:
                ctype = ConsentType(consent_type)
            except ValueError:
                raise ValidationError("Unknown consent type", consent_type=consent_type) from None
            ids = list(self._by_key.get((patient_id, ctype), []))
        else:
            ids = [cid for (pid, _), cids in list(self._by_key.items())
                   if pid == patient_id for cid in cids]
        consents = [self._consents[cid] for cid in ids]
        return sorted(consents, key=lambda c: (c.version, c.created_at), reverse=True)

    def active(self, patient_id: str, now: datetime | None = None) -> list[PatientConsent]:
        now = now or self._clock.now()
        return [c for c in self.query(patient_id) if c.is_active(now)]

    def verify(self, request: ConsentRequest) -> ConsentVerification:
        """
        Check whether a granted, unexpired consent covers a data request.

        Treatment consents are preferred, then the most recent. The check
        is audited as `consent.verify` with the derived risk level. An
        emergency override bypasses consent for roles holding the emergency
        capability and is always critical risk.
        """
        if request.emergency_override:
            return self._record_verification(request, self._emergency(request))

        active = self.active(request.patient_id)
        if not active:
            result = ConsentVerification(
                valid=False,
                reason="No active consent found for patient",
                risk_level=RiskLevel.CRITICAL,
                audit_required=True,
            )
            return self._record_verification(request, result)

        ordered = sorted(
            active,
            key=lambda c: (c.consent_type != ConsentType.TREATMENT, -c.created_at.timestamp()),
        )
        consent = next((c for c in ordered if _covers(c, request)), None)
        if consent is None:
            result = ConsentVerification(
                valid=False,
                reason="No applicable consent found for requested data access",
                risk_level=RiskLevel.HIGH,
                audit_required=True,
            )
            return self._record_verification(request, result)

        requested = set(request.data_categories)
        covered = tuple(c for c in consent.data_categories if c.category in requested)
        risk = _risk_for(covered)
        restrictions = []
        if consent.scope.facilities:
            restrictions.append("facility-restricted")
        if consent.scope.providers:
            restrictions.append("provider-restricted")
        result = ConsentVerification(
            valid=True,
            reason="Consent verified",
            consent_id=consent.id,
            consent_type=consent.consent_type,
            data_categories=covered,
            expires_at=consent.expires_at,
            risk_level=risk,
            audit_required=risk in (RiskLevel.HIGH, RiskLevel.CRITICAL)
            or len(request.data_categories) > 5,
            restrictions=tuple(restrictions),
        )
        return self._record_verification(request, result)

    def summary(self, patient_id: str, now: datetime | None = None) -> ConsentSummary:
        """Counts by lifecycle state, newest grant and soonest expiry. Not audited."""
        now = now or self._clock.now()
        consents = self.query(patient_id)
        live = [c for c in consents if c.is_active(now)]
        counts = {status: 0 for status in ConsentStatus}
        for consent in consents:
            counts[consent.status] += 1
        return ConsentSummary(
            patient_id=patient_id,
            active=len(live),
            pending=counts[ConsentStatus.PENDING],
            suspended=counts[ConsentStatus.SUSPENDED],
            # Granted past expiry but not yet swept still counts as expired
            expired=counts[ConsentStatus.EXPIRED] + counts[ConsentStatus.GRANTED] - len(live),
            revoked=counts[ConsentStatus.REVOKED],
            last_consent_at=max((c.granted_at for c in live), default=None),
            next_expiry_at=min((c.expires_at for c in live), default=None),
        )

    # ==================== PERSISTENCE ====================

    async def hydrate(self, patient_id: str) -> int:
        """Load a patient's consents from the repository. Returns how many were new."""
        if self._repository is None:
            return 0
        loaded = await self._repository.query_by_index(CONSENT_COLLECTION, "patient_id", patient_id)
        added = 0
        for consent in loaded:
            if consent.id not in self._consents:
                self._commit(consent)
                added += 1
        return added

    async def _load(self, consent_id: str) -> PatientConsent | None:
        if self._repository is None:
            return None
        consent = await self._repository.load(CONSENT_COLLECTION, consent_id)
        if consent is not None:
            await self.hydrate(consent.patient_id)
        return self._consents.get(consent_id)

    async def _persist(self, consent: PatientConsent) -> None:
        if self._repository is None:
            return
        await self._repository.save(
            CONSENT_COLLECTION, consent.id, consent,
            indexes={"patient_id": consent.patient_id},
        )

    def _commit(self, consent: PatientConsent) -> None:
        if consent.id not in self._consents:
            ids = self._by_key.setdefault(consent.key, [])
            ids.append(consent.id)
        self._consents[consent.id] = consent

    # ==================== INTERNALS ====================

    async def _transition(
        self,
        consent_id: str,
        verb: str,
        allowed_from: set[ConsentStatus],
        target: ConsentStatus,
        apply: Callable[[PatientConsent, datetime], PatientConsent],
        actor: Principal,
        correlation_id: str | None,
        risk: RiskLevel = RiskLevel.LOW,
    ) -> PatientConsent:
        action = f"consent.{verb}"
        existing = self._consents.get(consent_id)
        if existing is None:
            existing = await self._load(consent_id)
        if existing is None:
            self._record(action, actor, consent_id, AuditResult.FAILURE, correlation_id,
                         error="consent not found")
            raise ConsentNotFoundError(consent_id)

        async with self._locks.hold(existing.key):
            current = self._consents[consent_id]
            if current.status not in allowed_from or not can_transition(current.status, target):
                self._record(action, actor, consent_id, AuditResult.FAILURE, correlation_id,
                             error="invalid transition", status=current.status.value)
                raise InvalidStateError(consent_id, current.status.value, verb)

            updated = apply(current, self._clock.now())
            try:
                await self._persist(updated)
            except Exception as e:
                self._record(action, actor, consent_id, AuditResult.FAILURE, correlation_id,
                             error=str(e))
                raise
            self._commit(updated)
            self._record(action, actor, consent_id, AuditResult.SUCCESS, correlation_id,
                         risk=risk, patient_id=current.patient_id,
                         from_status=current.status.value, to_status=target.value)

        logger.info(f"Consent {verb}", consent_id=consent_id,
                    from_status=current.status.value, to_status=target.value)
        return updated

    def _validate_create(
        self,
        patient_id: str,
        consent_type: ConsentType | str,
        data_categories: Iterable[DataCategory | str],
        scope: ConsentScope,
        flags: ConsentFlags,
    ) -> tuple[ConsentType, tuple[DataCategory, ...]]:
        if not patient_id or not patient_id.strip():
            raise ValidationError("patient_id is required")
        try:
            ctype = ConsentType(consent_type)
        except ValueError:
            raise ValidationError("Unknown consent type", consent_type=consent_type) from None

        categories: list[DataCategory] = []
        seen: set[str] = set()
        for item in data_categories:
            if isinstance(item, str):
                category = self._categories.get(item)
                if category is None:
                    raise ValidationError("Unknown data category", category=item)
            else:
                category = item
            if category.category not in seen:
                seen.add(category.category)
                categories.append(category)
        if not categories:
            raise ValidationError("At least one data category is required")

        if flags.require_explicit_consent:
            missing = [c.category for c in categories
                       if c.requires_explicit_consent and c.category not in flags.explicit_categories]
            if missing:
                raise ValidationError("Explicit consent missing for categories", missing=missing)

        lo, hi = self._settings.min_time_limit_days, self._settings.max_time_limit_days
        if not isinstance(scope.time_limit, int) or not lo <= scope.time_limit <= hi:
            raise ValidationError(f"time_limit must be within [{lo}, {hi}] days",
                                  time_limit=scope.time_limit)
        return ctype, tuple(categories)

    def _max_version(self, key: tuple[str, ConsentType]) -> int:
        ids = self._by_key.get(key, [])
        return max((self._consents[cid].version for cid in ids), default=0)

    def _record(self, action: str, actor: Principal, resource_id: str, result: AuditResult,
                correlation_id: str | None, risk: RiskLevel | None = None, **details) -> str:
        if risk is None:
            risk = RiskLevel.MEDIUM if result != AuditResult.SUCCESS else RiskLevel.LOW
        return self._audit.append(AuditEntry(
            principal_id=actor.id,
            principal_role=actor.role,
            action=action,
            resource_type=RESOURCE_TYPE,
            resource_id=resource_id,
            result=result,
            risk_level=risk,
            correlation_id=correlation_id,
            details=details,
        ))

    def _emergency(self, request: ConsentRequest) -> ConsentVerification:
        role = self._roles.get(request.requesting_role)
        if role is None or not role.has(Capability.MEDICAL_RECORD_EMERGENCY_ACCESS):
            return ConsentVerification(
                valid=False,
                reason="Emergency override not permitted for role",
                risk_level=RiskLevel.CRITICAL,
                audit_required=True,
                emergency=True,
            )
        if not request.justification.strip():
            return ConsentVerification(
                valid=False,
                reason="Emergency override requires a justification",
                risk_level=RiskLevel.CRITICAL,
                audit_required=True,
                emergency=True,
            )
        categories = tuple(
            lookup(name) or DataCategory(category=name, description="Emergency access",
                                         sensitivity=Sensitivity.HIGH)
            for name in request.data_categories
        )
        logger.warning("Emergency consent override", patient_id=request.patient_id,
                       requester=request.requesting_principal_id,
                       justification=request.justification)
        return ConsentVerification(
            valid=True,
            reason="Emergency access granted - requires immediate audit review",
            data_categories=categories,
            risk_level=RiskLevel.CRITICAL,
            audit_required=True,
            restrictions=("emergency-override",),
            emergency=True,
        )

    def _record_verification(self, request: ConsentRequest,
                             result: ConsentVerification) -> ConsentVerification:
        self._audit.append(AuditEntry(
            principal_id=request.requesting_principal_id,
            principal_role=request.requesting_role,
            action="consent.verify",
            resource_type=RESOURCE_TYPE,
            resource_id=result.consent_id or request.patient_id,
            result=AuditResult.SUCCESS if result.valid else AuditResult.DENIED,
            risk_level=result.risk_level,
            details={
                "patient_id": request.patient_id,
                "categories": list(request.data_categories),
                "purpose": request.purpose,
                "emergency_override": request.emergency_override,
                "justification": request.justification,
            },
        ))
        if not result.valid:
            logger.warning("Consent verification failed", patient_id=request.patient_id,
                           requester=request.requesting_principal_id, reason=result.reason)
        return result


def _covers(consent: PatientConsent, request: ConsentRequest) -> bool:
    scope = consent.scope
    if request.facility_id and scope.facilities and request.facility_id not in scope.facilities:
        return False
    if request.provider_id and scope.providers and request.provider_id not in scope.providers:
        return False
    if request.service_type and scope.services and request.service_type not in scope.services:
        return False
    return set(request.data_categories) <= set(consent.category_names)


def _risk_for(categories: tuple[DataCategory, ...]) -> RiskLevel:
    sensitivities = {c.sensitivity for c in categories}
    for level in (Sensitivity.CRITICAL, Sensitivity.HIGH, Sensitivity.MEDIUM):
        if level in sensitivities:
            return level.risk
    return RiskLevel.LOW
