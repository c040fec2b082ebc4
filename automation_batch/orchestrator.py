"""
AutomationPlatform -- DI container for the whole automation system.

Contract:
    Wires the rule engine, the bulk operation orchestrator, recurring jobs,
    templates, standard comments and the delayed-action runner over one
    Session and one Clock, and creates the polling scheduler.  Single place
    where all dependencies are composed.

Architecture: automation_batch (top-level).  This is the canonical entry
    point; automation_rules never imports automation_batch.

Wiring:
    - Bulk completion events go to ``AutomationEngine.emit``.
    - START_PLAYBOOK actions with a ``bulkAction`` block launch bulk
      operations through ``BulkOperationLauncher``.
"""

from __future__ import annotations

import time
from functools import partial
from typing import Any, Callable

import httpx
from sqlalchemy.orm import Session

from automation_kernel.db.engine import commit_checkpoint
from automation_kernel.domain.clock import Clock, SystemClock
from automation_kernel.logging_config import get_logger
from automation_kernel.settings import AutomationSettings

from automation_batch.defaults import load_default_comments, load_default_templates
from automation_batch.domain.comments import CommentCatalog
from automation_batch.domain.templates import TemplateCatalog
from automation_batch.handlers.base import HandlerRegistry, default_handler_registry
from automation_batch.services.bulk_operations import (
    BulkOperationLauncher,
    BulkOperationService,
)
from automation_batch.services.comments import StandardCommentService
from automation_batch.services.recurring_jobs import RecurringJobService, TargetQuery
from automation_batch.services.scheduler import AutomationScheduler
from automation_batch.services.templates import TemplateService
from automation_rules.actions.collaborators import (
    ChatOpsSender,
    LoggingNotificationSender,
    NotificationSender,
    WorkflowGateway,
)
from automation_rules.actions.handlers import default_action_registry
from automation_rules.domain.rules import RuleCatalog
from automation_rules.domain.types import AutomationEventDraft, AutomationExecution
from automation_rules.services.delayed_actions import DelayedActionRunner
from automation_rules.services.engine import AutomationEngine

logger = get_logger("batch.orchestrator")


class AutomationPlatform:
    """DI container for the automation system.

    Contract:
        - ``from_session()`` factory creates a fully wired platform.
        - ``create_scheduler()`` returns an AutomationScheduler that builds
          a fresh platform per tick with the same collaborators and live
          bulk progress (the tick owns its session).

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        settings: AutomationSettings,
        engine: AutomationEngine,
        bulk_operations: BulkOperationService,
        recurring_jobs: RecurringJobService,
        templates: TemplateService,
        comments: StandardCommentService,
        delayed_actions: DelayedActionRunner,
        wiring: dict[str, Any] | None = None,
    ) -> None:
        self._session = session
        self._clock = clock
        self._settings = settings
        self.engine = engine
        self.bulk_operations = bulk_operations
        self.recurring_jobs = recurring_jobs
        self.templates = templates
        self.comments = comments
        self.delayed_actions = delayed_actions
        self._wiring = dict(wiring or {})

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        clock: Clock | None = None,
        settings: AutomationSettings | None = None,
        handlers: HandlerRegistry | None = None,
        notifier: NotificationSender | None = None,
        chatops: ChatOpsSender | None = None,
        gateway: WorkflowGateway | None = None,
        http_client: httpx.Client | None = None,
        target_query: TargetQuery | None = None,
        rule_catalog: RuleCatalog | None = None,
        template_catalog: TemplateCatalog | None = None,
        comment_catalog: CommentCatalog | None = None,
        sleep: Callable[[float], None] = time.sleep,
        live_progress: bool = False,
    ) -> AutomationPlatform:
        """Create a fully wired AutomationPlatform from a session.

        Args:
            session: SQLAlchemy session for persistence.
            clock: Optional clock for deterministic testing.
            settings: Optional settings; defaults to AutomationSettings().
            handlers: Bulk target handlers.  If None, an empty registry:
                every bulk operation then ends FAILED until handlers are
                registered.
            notifier / chatops / gateway: Delivery collaborators; None falls
                back to the logging defaults.
            http_client: httpx client for WEBHOOK actions.
            target_query: Resolver for query-based recurring selections.
            rule_catalog / template_catalog / comment_catalog: Built-in
                defaults; None loads the packaged YAML catalogs.
            sleep: Retry backoff sleeper (tests pass a no-op).
            live_progress: Commit the session after every bulk progress
                write (outside SAVEPOINTs) so other connections see it.
                Only for callers that own the session's transaction.
        """
        wiring = {
            "clock": clock or SystemClock(),
            "settings": settings or AutomationSettings(),
            "handlers": handlers if handlers is not None else default_handler_registry(),
            "notifier": notifier or LoggingNotificationSender(),
            "chatops": chatops,
            "gateway": gateway,
            "http_client": http_client,
            "target_query": target_query,
            "rule_catalog": rule_catalog,
            "template_catalog": template_catalog,
            "comment_catalog": comment_catalog,
            "sleep": sleep,
            "live_progress": live_progress,
        }
        effective_clock = wiring["clock"]
        effective_settings = wiring["settings"]
        notifier = wiring["notifier"]

        def emit(draft: AutomationEventDraft) -> tuple[AutomationExecution, ...]:
            return engine.emit(draft)

        bulk = BulkOperationService(
            session,
            effective_clock,
            wiring["handlers"],
            effective_settings,
            notifier=notifier,
            event_sink=emit,
            progress_checkpoint=partial(commit_checkpoint, session) if live_progress else None,
        )
        registry = default_action_registry(
            notifier=notifier,
            chatops=chatops,
            gateway=gateway,
            http_client=http_client,
            bulk_launcher=BulkOperationLauncher(bulk),
            webhook_timeout=effective_settings.webhook_timeout_seconds,
        )
        engine = AutomationEngine(
            session,
            effective_clock,
            registry,
            catalog=rule_catalog,
            settings=effective_settings,
            sleep=sleep,
        )
        recurring = RecurringJobService(
            session,
            effective_clock,
            bulk,
            notifier=notifier,
            target_query=target_query,
            settings=effective_settings,
        )
        templates = TemplateService(
            session,
            effective_clock,
            template_catalog if template_catalog is not None else load_default_templates(),
            bulk,
        )
        comments = StandardCommentService(
            session,
            effective_clock,
            comment_catalog if comment_catalog is not None else load_default_comments(),
        )
        delayed = DelayedActionRunner(
            session, effective_clock, engine.store, engine.recorder, engine.executor,
        )

        return cls(
            session=session,
            clock=effective_clock,
            settings=effective_settings,
            engine=engine,
            bulk_operations=bulk,
            recurring_jobs=recurring,
            templates=templates,
            comments=comments,
            delayed_actions=delayed,
            wiring=wiring,
        )

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------

    def create_scheduler(
        self,
        session_factory: Callable[[], Session],
        tick_interval_seconds: int | None = None,
    ) -> AutomationScheduler:
        """Create an AutomationScheduler wired with this platform's collaborators.

        Args:
            session_factory: Callable returning new sessions for each tick.
            tick_interval_seconds: Polling interval (default from settings).
        """
        wiring = self._wiring
        platform_cls = type(self)

        def platform_factory(session: Session) -> AutomationPlatform:
            return platform_cls.from_session(session, **{**wiring, "live_progress": True})

        return AutomationScheduler(
            session_factory=session_factory,
            platform_factory=platform_factory,
            clock=self._clock,
            tick_interval_seconds=(
                tick_interval_seconds
                if tick_interval_seconds is not None
                else self._settings.scheduler_tick_seconds
            ),
        )

    # -------------------------------------------------------------------------
    # Producer entry point
    # -------------------------------------------------------------------------

    def emit(self, draft: AutomationEventDraft) -> tuple[AutomationExecution, ...]:
        return self.engine.emit(draft)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def settings(self) -> AutomationSettings:
        return self._settings
