"""Request orchestration: guard, attachments, composer, mailer, audit."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping

from formgate.core.config import AntiAbuseSettings, AppSettings
from formgate.core.container import ServiceContainer
from formgate.core.datetime_utils import from_epoch
from formgate.core.errors import (
    AbuseRejection,
    ClientError,
    FormgateError,
    TransportError,
)
from formgate.core.interfaces import AuditSink
from formgate.core.models import (
    AuditRecord,
    InboundRequest,
    ServiceResponse,
    Submission,
)
from formgate.guard import AntiAbuseGuard, HttpCaptchaVerifier, Reject, extract_token
from formgate.guard.captcha import TOKEN_FIELDS
from formgate.guard.checks import host_of
from formgate.ingestion import AttachmentProcessor, MessageComposer
from formgate.ingestion.composer import header_value, strip_non_printable
from formgate.storage import AuditLogger, FileRateCounterStore
from formgate.transport import ApiTransport, DualTransportMailer, SmtpTransport

LOGGER = logging.getLogger(__name__)

RESERVED_FIELDS = frozenset({"email", "name", "message", "ts", "site"})
MAX_FIELD_NAME_LENGTH = 64
MAX_SITE_LENGTH = 200


def collect_extra_fields(
    fields: Mapping[str, str], settings: AntiAbuseSettings
) -> dict[str, str]:
    """Keep posted fields the form defines beyond the known ones.

    Names and values are sanitised, values are cut to ``max_field_length``
    and at most ``max_extra_fields`` non-empty fields are kept.
    """
    reserved = RESERVED_FIELDS | {settings.honeypot_field}
    reserved |= {name for names in TOKEN_FIELDS.values() for name in names}
    extras: dict[str, str] = {}
    for key, raw in fields.items():
        if key in reserved:
            continue
        name = header_value(key)[:MAX_FIELD_NAME_LENGTH]
        value = strip_non_printable(raw).strip()[: settings.max_field_length]
        if not name or not value or name in extras:
            continue
        if len(extras) >= settings.max_extra_fields:
            LOGGER.info(
                "Dropping form fields beyond the first %d", settings.max_extra_fields
            )
            break
        extras[name] = value
    return extras


def build_submission(
    request: InboundRequest, settings: AntiAbuseSettings
) -> Submission:
    """Construct the per-request submission from raw form fields."""
    fields = request.fields
    return Submission(
        email=(fields.get("email") or "").strip(),
        name=header_value(fields.get("name") or ""),
        message=strip_non_printable(fields.get("message") or "").strip(),
        client_timestamp=fields.get("ts"),
        honeypot=fields.get(settings.honeypot_field) or "",
        captcha_token=extract_token(settings.captcha_provider, fields),
        site=header_value(fields.get("site") or "")[:MAX_SITE_LENGTH] or None,
        extra_fields=collect_extra_fields(fields, settings),
        files=list(request.files),
    )


def rejection_error(verdict: Reject) -> FormgateError:
    """Translate a guard verdict into the matching error type."""
    if verdict.category == "client":
        return ClientError(verdict.reason)
    return AbuseRejection(verdict.reason, verdict.status)


class FormSubmissionService:
    """Turns every inbound request into an HTTP status and JSON body."""

    def __init__(
        self,
        settings: AppSettings,
        *,
        guard: AntiAbuseGuard,
        attachments: AttachmentProcessor,
        composer: MessageComposer,
        mailer: DualTransportMailer,
        audit: AuditSink,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._guard = guard
        self._attachments = attachments
        self._composer = composer
        self._mailer = mailer
        self._audit = audit
        self._clock = clock

    def handle(self, request: InboundRequest) -> ServiceResponse:
        if request.method.upper() != "POST":
            return self._finish(
                request, None, 405, "method_not_allowed", event="method_not_allowed"
            )

        submission = build_submission(request, self._settings.anti_abuse)
        try:
            return self._process(request, submission)
        except TransportError as exc:
            return self._finish(
                request,
                submission,
                exc.status,
                exc.code,
                event=exc.event,
                transport=",".join(exc.attempted) or None,
            )
        except FormgateError as exc:
            return self._finish(
                request, submission, exc.status, exc.code, event=exc.event
            )
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception(
                "Unhandled error processing request from %s", request.client_ip
            )
            return self._finish(
                request, submission, 500, "internal_error", event="internal_error"
            )

    def _process(
        self, request: InboundRequest, submission: Submission
    ) -> ServiceResponse:
        verdict = self._guard.evaluate(request, submission)
        if isinstance(verdict, Reject):
            if verdict.decoy:
                LOGGER.warning("Honeypot tripped by %s", request.client_ip)
                return self._finish(
                    request, submission, 200, "honeypot", event="honeypot_tripped"
                )
            raise rejection_error(verdict)

        self._settings.require_recipients()
        submission.attachments = self._attachments.process(submission.files)
        message = self._composer.compose(
            submission,
            client_ip=request.client_ip,
            site=submission.site or host_of(request.host),
            now=from_epoch(self._clock()),
        )

        report = self._mailer.deliver(message)
        if not report.success:
            details = "; ".join(
                f"{attempt.transport}@{attempt.stage}: {attempt.error}"
                for attempt in report.attempts
            )
            LOGGER.error(
                "Delivery failed for %s: %s", request.client_ip, details or "-"
            )
            raise TransportError(
                "delivery_failed",
                details or "no transport configured",
                attempted=tuple(attempt.transport for attempt in report.attempts),
            )

        return self._finish(
            request,
            submission,
            200,
            "sent",
            event="submission_sent",
            transport=report.transport,
        )

    def _finish(
        self,
        request: InboundRequest,
        submission: Submission | None,
        status: int,
        outcome: str,
        *,
        event: str,
        transport: str | None = None,
    ) -> ServiceResponse:
        self._audit.record(
            AuditRecord(
                timestamp=from_epoch(self._clock()),
                event=event,
                client_ip=request.client_ip,
                host=request.host,
                origin=request.origin,
                referer=request.referer,
                user_agent=request.user_agent,
                status=status,
                outcome=outcome,
                transport=transport,
                submission=submission.snapshot() if submission else None,
            )
        )
        if status == 200:
            return ServiceResponse(status=200, body={"ok": True})
        return ServiceResponse(status=status, body={"ok": False, "error": outcome})


def build_container(settings: AppSettings) -> ServiceContainer:
    """Register the default collaborators for ``settings``."""
    container = ServiceContainer(settings)
    anti_abuse = settings.anti_abuse
    transport = settings.transport

    container.register(
        "rate_store",
        lambda c: FileRateCounterStore(
            anti_abuse.rate_store_dir, anti_abuse.rate_window_seconds
        ),
    )
    container.register(
        "captcha",
        lambda c: None
        if anti_abuse.captcha_provider == "none"
        else HttpCaptchaVerifier.from_settings(
            anti_abuse, timeout_seconds=transport.timeout_seconds
        ),
    )
    container.register(
        "guard",
        lambda c: AntiAbuseGuard(
            anti_abuse, c.resolve("rate_store"), c.resolve("captcha")
        ),
    )
    container.register("attachments", lambda c: AttachmentProcessor(anti_abuse))
    container.register("composer", lambda c: MessageComposer(settings))
    container.register("api_transport", lambda c: ApiTransport(transport))
    container.register("smtp_transport", lambda c: SmtpTransport(transport))
    container.register(
        "mailer",
        lambda c: DualTransportMailer(
            (c.resolve("api_transport"), c.resolve("smtp_transport"))
        ),
    )
    container.register(
        "audit",
        lambda c: AuditLogger(
            settings.logging.audit_path, settings.logging.redact_fields
        ),
    )
    container.register(
        "service",
        lambda c: FormSubmissionService(
            settings,
            guard=c.resolve("guard"),
            attachments=c.resolve("attachments"),
            composer=c.resolve("composer"),
            mailer=c.resolve("mailer"),
            audit=c.resolve("audit"),
        ),
    )
    return container


__all__ = [
    "FormSubmissionService",
    "build_container",
    "build_submission",
    "collect_extra_fields",
    "rejection_error",
]
