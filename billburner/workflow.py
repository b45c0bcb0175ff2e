"""Provider workflow interpreter.

A ProviderWorkflow walks one ProviderDefinition through the login and
extraction state machine:

    START -> NAVIGATE -> AWAIT_LOGIN_FORM -> SUBMIT_CREDENTIALS -> AWAIT_POST_LOGIN
      [-> AWAIT_OTP_CHALLENGE -> RETRIEVE_OTP -> SUBMIT_OTP]
      -> AWAIT_RESULT -> EXTRACT -> NORMALIZE -> DONE

Any await that times out, and any other BillburnerError, ends in FAILED.
Bills are only written at DONE; a failed workflow leaves them untouched.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable

import structlog

from billburner.browser.session import ExtractionCapability
from billburner.cancel import CancelToken
from billburner.config import Settings
from billburner.definitions import DateRule, OtpChallenge, ProviderDefinition, Step
from billburner.errors import (
    AuthStepTimeout,
    BillburnerError,
    MissingCredentials,
    OtpUnavailable,
    ResultTimeout,
)
from billburner.mail.otp import OtpRetriever
from billburner.models import Bill
from billburner.normalize import clean_date_text, next_month_day, parse_amount, parse_due_date

logger = structlog.get_logger(__name__)


class WorkflowState(str, Enum):
    START = "start"
    NAVIGATE = "navigate"
    AWAIT_LOGIN_FORM = "await_login_form"
    SUBMIT_CREDENTIALS = "submit_credentials"
    AWAIT_POST_LOGIN = "await_post_login"
    AWAIT_OTP_CHALLENGE = "await_otp_challenge"
    RETRIEVE_OTP = "retrieve_otp"
    SUBMIT_OTP = "submit_otp"
    AWAIT_RESULT = "await_result"
    EXTRACT = "extract"
    NORMALIZE = "normalize"
    DONE = "done"
    FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ExecutionContext:
    """Collaborators shared by every workflow in a run."""

    session: ExtractionCapability
    otp: OtpRetriever
    settings: Settings
    cancel: CancelToken
    clock: Callable[[], datetime] = field(default=utc_now)


class ProviderWorkflow:
    """Executes one provider definition against the shared browser session.

    Attributes:
        definition: The provider being retrieved.
        state: Current state; DONE or FAILED once ``run`` returns.
        failed_at: State in which the workflow failed, if it did.
    """

    def __init__(self, definition: ProviderDefinition, context: ExecutionContext) -> None:
        self.definition = definition
        self.context = context
        self.state = WorkflowState.START
        self.failed_at: WorkflowState | None = None
        self.log = logger.bind(provider=definition.name)
        self._credentials: tuple[str, str] = ("", "")
        self._otp_code = ""
        self._otp_baseline = 0
        self._texts: dict[str, str] = {}

    async def run(self, bills: dict[str, Bill]) -> WorkflowState:
        """Run the workflow and commit its bills into ``bills`` on success.

        Raises:
            RunCancelled: If the run is cancelled between two states.
        """
        self.log.info("workflow_started")
        try:
            if self.definition.fixed is not None:
                results = self._fixed_bills()
            else:
                results = await self._authenticate_and_extract()
        except BillburnerError as e:
            self.failed_at = self.state
            self.state = WorkflowState.FAILED
            self.log.error(
                "workflow_failed",
                failed_at=self.failed_at.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._save_failure_screenshot()
            return self.state

        self._transition(WorkflowState.DONE)
        for name, result in results.items():
            bill = bills[name]
            bill.amount_due = result.amount_due
            bill.due_date = result.due_date
            bill.retrieved = True

        self.log.info(
            "workflow_completed",
            bills={name: str(result.amount_due) for name, result in results.items()},
        )
        return self.state

    def _transition(self, state: WorkflowState) -> None:
        self.context.cancel.raise_if_cancelled()
        self.state = state
        self.log.debug("workflow_state_changed", state=state.value)

    def _fixed_bills(self) -> dict[str, Bill]:
        fixed = self.definition.fixed
        self._transition(WorkflowState.NORMALIZE)
        due = next_month_day(fixed.due_day, self.context.clock())
        return {self.definition.name: Bill(amount_due=fixed.amount, due_date=due)}

    async def _authenticate_and_extract(self) -> dict[str, Bill]:
        definition = self.definition
        session = self.context.session

        self._credentials = self._resolve_credentials()

        self._transition(WorkflowState.NAVIGATE)
        await session.navigate(definition.login_url)

        self._transition(WorkflowState.AWAIT_LOGIN_FORM)
        await self._perform(definition.login_form, AuthStepTimeout)

        self._transition(WorkflowState.SUBMIT_CREDENTIALS)
        if definition.otp is not None:
            # Codes can be sent as soon as the credentials are accepted.
            await self._record_otp_baseline(definition.otp)
        await self._perform(definition.submit_credentials, AuthStepTimeout)

        self._transition(WorkflowState.AWAIT_POST_LOGIN)
        await self._perform(definition.post_login, AuthStepTimeout)

        if definition.otp is not None:
            await self._complete_otp_challenge(definition.otp)

        self._transition(WorkflowState.AWAIT_RESULT)
        await self._perform(definition.result, ResultTimeout)

        self._transition(WorkflowState.EXTRACT)
        raw: dict[str, tuple[str, str, DateRule]] = {}
        for record in definition.records:
            await self._perform(record.before, ResultTimeout)
            amount_text = await session.get_text(record.amount, use_script=record.amount_script)
            date_text = await session.get_text(record.due_date.selector, use_script=record.due_date.script)
            self._texts[record.amount] = amount_text
            self._texts[record.due_date.selector] = date_text
            raw[record.bill] = (amount_text, date_text, record.due_date)
            self.log.debug("record_extracted", bill=record.bill, amount_text=amount_text, date_text=date_text)

        self._transition(WorkflowState.NORMALIZE)
        now = self.context.clock()
        return {
            name: Bill(amount_due=parse_amount(amount_text), due_date=self._parse_date(date_text, rule, now))
            for name, (amount_text, date_text, rule) in raw.items()
        }

    async def _record_otp_baseline(self, otp: OtpChallenge) -> None:
        self._otp_baseline = await self.context.otp.latest_message_id(
            self.context.settings.mailbox(otp.mailbox), otp.subject
        )

    async def _complete_otp_challenge(self, otp: OtpChallenge) -> None:
        self._transition(WorkflowState.AWAIT_OTP_CHALLENGE)
        await self._perform(otp.request, AuthStepTimeout)
        await self._await(otp.challenge, otp.timeout_ms, AuthStepTimeout)

        self._transition(WorkflowState.RETRIEVE_OTP)
        settings = self.context.settings
        code = await self.context.otp.poll_code(
            settings.mailbox(otp.mailbox),
            otp.subject,
            otp.start,
            otp.end,
            after_id=self._otp_baseline,
            timeout_seconds=settings.otp_timeout_seconds,
            interval_seconds=settings.otp_poll_interval_seconds,
        )
        if not code:
            raise OtpUnavailable(f"no verification code for subject {otp.subject!r}")
        self._otp_code = code

        self._transition(WorkflowState.SUBMIT_OTP)
        await self._perform([otp.input, *otp.submit], AuthStepTimeout)

    def _resolve_credentials(self) -> tuple[str, str]:
        try:
            username, password = self.context.settings.credentials(self.definition.credentials)
        except KeyError as e:
            raise MissingCredentials(str(e)) from e
        if not username or not password:
            raise MissingCredentials(f"credentials {self.definition.credentials!r} are not configured")
        return username, password

    async def _perform(self, steps: list[Step], timeout_error: type[BillburnerError]) -> None:
        session = self.context.session
        for step in steps:
            self.context.cancel.raise_if_cancelled()
            action = step.action
            if action == "await":
                await self._await(step.selector, step.timeout_ms, timeout_error)
            elif action == "await_change":
                timeout_ms = step.timeout_ms or self.context.settings.step_timeout_ms
                previous = {selector: self._texts.get(selector, "") for selector in step.selectors}
                if not await session.wait_for_text_change(previous, timeout_ms):
                    raise timeout_error(f"{', '.join(step.selectors)} did not change within {timeout_ms} ms")
            elif action == "click":
                await session.click(step.selector, use_script=step.script)
            elif action == "input":
                await session.input_text(
                    step.selector,
                    self._input_value(step.value),
                    use_script=step.script,
                    dispatch_events=step.dispatch_events,
                )

    async def _await(
        self, selector: str, timeout_ms: int | None, timeout_error: type[BillburnerError]
    ) -> None:
        timeout_ms = timeout_ms or self.context.settings.step_timeout_ms
        if not await self.context.session.element_exists(selector, timeout_ms):
            raise timeout_error(f"{selector} not found within {timeout_ms} ms")

    def _input_value(self, value: str | None) -> str:
        if value == "username":
            return self._credentials[0]
        if value == "password":
            return self._credentials[1]
        return self._otp_code

    @staticmethod
    def _parse_date(text: str, rule: DateRule, now: datetime) -> datetime:
        cleaned = clean_date_text(
            text,
            after=rule.after,
            before=rule.before,
            remove=rule.remove,
            first_token=rule.first_token,
            year=now.year if rule.append_year else None,
        )
        return parse_due_date(cleaned, rule.layout)

    async def _save_failure_screenshot(self) -> None:
        directory = self.context.settings.screenshot_dir
        if not directory:
            return
        data = await self.context.session.capture_screenshot()
        if not data:
            return
        stamp = self.context.clock().strftime("%Y%m%dT%H%M%S")
        path = Path(directory) / f"{self.definition.name.lower()}-{stamp}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            self.log.info("failure_screenshot_saved", path=str(path))
        except OSError as e:
            self.log.warning("failure_screenshot_not_saved", path=str(path), error=str(e))
