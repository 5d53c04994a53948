"""
CareKeep Core

Explicitly constructed service graph. Every component receives its
collaborators here; nothing is discovered through module-level state.
"""

from datetime import datetime

import structlog

from carekeep.access.authorizer import Decision, RoleAuthorizer
from carekeep.access.roles import RoleTable, default_role_table
from carekeep.audit.export import AuditExporter
from carekeep.audit.recorder import AuditRecorder
from carekeep.clock import ClockSource, SystemClock
from carekeep.config import Settings, get_settings
from carekeep.consent.store import ConsentStore
from carekeep.identity import Principal, PrincipalProvider
from carekeep.observability.logging import configure_logging
from carekeep.reports.compliance import ComplianceReport, ComplianceReporter
from carekeep.scheduling import PeriodicTask
from carekeep.session.guard import SessionGuard
from carekeep.session.models import Session
from carekeep.session.monitor import SessionMonitor
from carekeep.storage import Repository

logger = structlog.get_logger(__name__)


class CareKeep:
    """
    Authorization and consent lifecycle core.

    Usage:
        core = CareKeep(clock=ManualClock(), repository=InMemoryRepository())
        async with core:
            core.sign_in(Principal(id="doc-1", role="doctor"))
            decision = core.authorizer.authorize("doctor", "medical_record:read",
                                                 principal_id="doc-1")
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clock: ClockSource | None = None,
        repository: Repository | None = None,
        roles: RoleTable | None = None,
        principals: PrincipalProvider | None = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.repository = repository
        self.principals = principals
        self.roles = roles or default_role_table()

        self.audit = AuditRecorder(self.clock, sink=repository, settings=self.settings.audit)
        self.consents = ConsentStore(
            self.audit, self.clock, repository=repository,
            settings=self.settings.consent, roles=self.roles,
        )
        self.sessions = SessionGuard(self.audit, self.clock, settings=self.settings.session)
        self.authorizer = RoleAuthorizer(self.audit, roles=self.roles, sessions=self.sessions)
        self.reporter = ComplianceReporter(self.audit, self.clock)
        self.exporter = AuditExporter(self.audit)

        self.session_monitor = SessionMonitor(self.sessions, self.clock, self.settings.session)
        self.consent_sweep: PeriodicTask = self.consents.sweep_task()
        self._started = False

    # ==================== LIFECYCLE ====================

    async def start(self) -> None:
        """Start the audit flusher, session monitor and consent expiry sweep."""
        if self._started:
            return
        if self.settings.app.setup_logging:
            configure_logging(self.settings.app)
        self.audit.start()
        self.session_monitor.start()
        self.consent_sweep.start()
        self._started = True
        logger.info("CareKeep started", env=self.settings.app.env,
                    durable_audit=self.repository is not None)

    async def stop(self) -> None:
        if not self._started:
            return
        await self.consent_sweep.stop()
        await self.session_monitor.stop()
        await self.audit.stop()
        self._started = False
        logger.info("CareKeep stopped", pending_audit=self.audit.pending_count)

    async def __aenter__(self) -> "CareKeep":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ==================== CONVENIENCE ====================

    def sign_in(self, principal: Principal, correlation_id: str | None = None) -> Session:
        """Open a session for a principal the identity source has authenticated."""
        return self.sessions.start(principal.id, principal.role, correlation_id)

    def sign_out(self, principal_id: str, correlation_id: str | None = None) -> Session:
        return self.sessions.expire(principal_id, correlation_id)

    def authorize_current(
        self,
        action: str,
        resource_owner_id: str | None = None,
        correlation_id: str | None = None,
    ) -> Decision:
        """Authorize the identity source's current principal. No principal means deny."""
        principal = self.principals.get_current_principal() if self.principals else None
        if principal is None:
            return self.authorizer.authorize(
                "", action, resource_owner_id, None, correlation_id
            )
        return self.authorizer.authorize(
            principal.role, action, resource_owner_id, principal.id, correlation_id
        )

    def compliance_report(self, start: datetime | None = None,
                          end: datetime | None = None) -> ComplianceReport:
        return self.reporter.generate(start, end)

    def health(self) -> dict:
        return {
            "running": self._started,
            "audit_events": len(self.audit),
            "audit_pending": self.audit.pending_count,
            "audit_degraded": self.audit.degraded,
            "audit_last_error": self.audit.last_error,
            "sessions": len(self.sessions),
        }
