"""Tests for the provider workflow state machine."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from billburner.cancel import CancelReason
from billburner.errors import RunCancelled
from billburner.models import UNKNOWN_DUE_DATE, Bill
from billburner.workflow import ProviderWorkflow, WorkflowState
from tests.conftest import FakeSession

GAS_PAGE = {
    "present": {"#loginEmail", ".amount-due", ".due-date"},
    "texts": {".amount-due": "$123.45", ".due-date": "May 08, 2024"},
}

MORTGAGE_AMOUNT = "div.r-edyy15:nth-child(1) > div:nth-child(1) > div:nth-child(1) > div:nth-child(1)"
MORTGAGE_DUE = "div.r-edyy15:nth-child(1) > div:nth-child(1) > div:nth-child(3) > div:nth-child(1)"

WIRELESS_AMOUNT = ".w-100"
WIRELESS_DUE = "div.pad-t-md-sm:nth-child(1) > div:nth-child(2)"
INTERNET_TAB = "div.jsx-2552546055:nth-child(1) > div:nth-child(1) > div:nth-child(3) > div:nth-child(1)"


def fresh_bills(*names: str) -> dict[str, Bill]:
    return {name: Bill() for name in names}


def assert_untouched(bill: Bill) -> None:
    assert bill.amount_due == Decimal("0")
    assert bill.due_date == UNKNOWN_DUE_DATE
    assert bill.retrieved is False


@pytest.mark.asyncio
async def test_workflow_success(catalog, make_context):
    """Test a login-and-extract provider reaches DONE and commits its bill."""
    session = FakeSession(**GAS_PAGE)
    bills = fresh_bills("Gas")

    workflow = ProviderWorkflow(catalog.get("Gas"), make_context(session))
    state = await workflow.run(bills)

    assert state == WorkflowState.DONE
    assert bills["Gas"].amount_due == Decimal("123.45")
    assert bills["Gas"].due_date == datetime(2024, 5, 9, tzinfo=timezone.utc)
    assert bills["Gas"].retrieved is True
    assert session.calls[0] == (
        "navigate",
        "https://myaccount.spireenergy.com/web/customer/registration/#/sign-in",
    )
    assert session.inputs() == [
        ("input", "#loginEmail", "gas-user"),
        ("input", "#loginPassword", "gas-pass"),
    ]


@pytest.mark.asyncio
async def test_workflow_login_form_timeout(catalog, make_context):
    """Test a login form that never appears fails the workflow untouched."""
    session = FakeSession(present={".amount-due"})
    bills = fresh_bills("Gas")

    workflow = ProviderWorkflow(catalog.get("Gas"), make_context(session))
    state = await workflow.run(bills)

    assert state == WorkflowState.FAILED
    assert workflow.failed_at == WorkflowState.AWAIT_LOGIN_FORM
    assert_untouched(bills["Gas"])
    assert session.inputs() == []


@pytest.mark.asyncio
async def test_workflow_result_timeout(catalog, make_context):
    """Test a missing result element fails in AWAIT_RESULT."""
    session = FakeSession(present={"#loginEmail"}, texts=GAS_PAGE["texts"])
    bills = fresh_bills("Gas")

    workflow = ProviderWorkflow(catalog.get("Gas"), make_context(session))
    state = await workflow.run(bills)

    assert state == WorkflowState.FAILED
    assert workflow.failed_at == WorkflowState.AWAIT_RESULT
    assert_untouched(bills["Gas"])


@pytest.mark.asyncio
async def test_workflow_unparseable_text_still_done(catalog, make_context):
    """Test parse failures yield zero and the unknown date, not a failure."""
    session = FakeSession(
        present=GAS_PAGE["present"],
        texts={".amount-due": "No balance", ".due-date": "soon"},
    )
    bills = fresh_bills("Gas")

    state = await ProviderWorkflow(catalog.get("Gas"), make_context(session)).run(bills)

    assert state == WorkflowState.DONE
    assert bills["Gas"].amount_due == Decimal("0")
    assert bills["Gas"].due_date == UNKNOWN_DUE_DATE
    assert bills["Gas"].retrieved is True


@pytest.mark.asyncio
async def test_workflow_missing_credentials(catalog, make_context):
    """Test a provider without configured credentials never navigates."""
    session = FakeSession(present={"#body_content_txtUsername"})
    bills = fresh_bills("Sewer")

    workflow = ProviderWorkflow(catalog.get("Sewer"), make_context(session))
    state = await workflow.run(bills)

    assert state == WorkflowState.FAILED
    assert workflow.failed_at == WorkflowState.START
    assert session.calls == []
    assert_untouched(bills["Sewer"])


@pytest.mark.asyncio
async def test_workflow_otp_challenge(catalog, make_context):
    """Test the mailbox code is entered into the challenge form."""
    session = FakeSession(
        present={"#username", "#tfaEmail", MORTGAGE_AMOUNT},
        texts={MORTGAGE_AMOUNT: "$1,512.33", MORTGAGE_DUE: "05/01/2024"},
    )
    otp = AsyncMock()
    otp.latest_message_id.return_value = 41
    otp.poll_code.return_value = "482910"
    bills = fresh_bills("Mortgage")

    state = await ProviderWorkflow(catalog.get("Mortgage"), make_context(session, otp=otp)).run(bills)

    assert state == WorkflowState.DONE
    assert bills["Mortgage"].amount_due == Decimal("1512.33")
    assert bills["Mortgage"].due_date == datetime(2024, 5, 2, tzinfo=timezone.utc)
    assert ("input", "#tfaEmail", "482910") in session.inputs()
    assert ("click", "#login-tfa-email-verify-btn") in session.calls

    mailbox, subject, start, end = otp.poll_code.await_args.args
    assert mailbox.username == "codes@example.com"
    assert (subject, start, end) == ("Pennymac - Email Confirmation", "PM-", "\n")
    assert otp.poll_code.await_args.kwargs["after_id"] == 41


@pytest.mark.asyncio
async def test_workflow_records_otp_baseline_before_code_is_sent(catalog, make_context):
    """Test the mailbox baseline is read before the credentials are submitted."""
    session = FakeSession(
        present={"#username", "#tfaEmail", MORTGAGE_AMOUNT},
        texts={MORTGAGE_AMOUNT: "$1,512.33", MORTGAGE_DUE: "05/01/2024"},
    )
    order = []
    otp = AsyncMock()
    otp.latest_message_id.side_effect = lambda *args: order.append(len(session.calls)) or 41
    otp.poll_code.return_value = "482910"

    await ProviderWorkflow(catalog.get("Mortgage"), make_context(session, otp=otp)).run(fresh_bills("Mortgage"))

    assert len(order) == 1
    assert [call for call in session.calls[: order[0]] if call[0] in ("input", "click")] == []
    mailbox, subject = otp.latest_message_id.await_args.args
    assert (mailbox.username, subject) == ("codes@example.com", "Pennymac - Email Confirmation")


@pytest.mark.asyncio
async def test_workflow_empty_otp_fails(catalog, make_context):
    """Test an empty code is never submitted and fails the workflow."""
    session = FakeSession(
        present={"#username", "#tfaEmail", MORTGAGE_AMOUNT},
        texts={MORTGAGE_AMOUNT: "$1,512.33", MORTGAGE_DUE: "05/01/2024"},
    )
    otp = AsyncMock()
    otp.poll_code.return_value = ""
    bills = fresh_bills("Mortgage")

    workflow = ProviderWorkflow(catalog.get("Mortgage"), make_context(session, otp=otp))
    state = await workflow.run(bills)

    assert state == WorkflowState.FAILED
    assert workflow.failed_at == WorkflowState.RETRIEVE_OTP
    assert all(call[1] != "#tfaEmail" for call in session.inputs())
    assert_untouched(bills["Mortgage"])


@pytest.mark.asyncio
async def test_workflow_otp_challenge_timeout(catalog, make_context):
    """Test a challenge form that never appears fails before reading mail."""
    session = FakeSession(present={"#username"})
    otp = AsyncMock()
    bills = fresh_bills("Mortgage")

    workflow = ProviderWorkflow(catalog.get("Mortgage"), make_context(session, otp=otp))
    state = await workflow.run(bills)

    assert state == WorkflowState.FAILED
    assert workflow.failed_at == WorkflowState.AWAIT_OTP_CHALLENGE
    otp.poll_code.assert_not_awaited()


def switch_to_internet(session: FakeSession) -> None:
    session.texts[WIRELESS_AMOUNT] = "$65.00"
    session.texts[WIRELESS_DUE] = "Due May 03, 2024"


@pytest.mark.asyncio
async def test_workflow_shared_session_produces_two_bills(catalog, make_context):
    """Test one login yields both the Wireless and Internet bills."""
    session = FakeSession(
        present={"#userID", "#password", "#chooseMethodMakePaymentButton", ".page-title", WIRELESS_AMOUNT, WIRELESS_DUE},
        texts={WIRELESS_AMOUNT: "$142.18", WIRELESS_DUE: "Due Apr 28, 2024"},
        on_click={INTERNET_TAB: switch_to_internet},
    )
    bills = fresh_bills("Wireless", "Internet")

    state = await ProviderWorkflow(catalog.get("Wireless"), make_context(session)).run(bills)

    assert state == WorkflowState.DONE
    assert bills["Wireless"].amount_due == Decimal("142.18")
    assert bills["Wireless"].due_date == datetime(2024, 4, 29, tzinfo=timezone.utc)
    assert bills["Internet"].amount_due == Decimal("65.00")
    assert bills["Internet"].due_date == datetime(2024, 5, 4, tzinfo=timezone.utc)
    assert bills["Internet"].retrieved is True


def switch_to_internet_same_balance(session: FakeSession) -> None:
    session.texts[WIRELESS_DUE] = "Due May 03, 2024"


@pytest.mark.asyncio
async def test_workflow_shared_session_equal_balances(catalog, make_context):
    """Test equal Wireless and Internet amounts still produce both bills."""
    session = FakeSession(
        present={"#userID", "#password", "#chooseMethodMakePaymentButton", ".page-title", WIRELESS_AMOUNT, WIRELESS_DUE},
        texts={WIRELESS_AMOUNT: "$0.00", WIRELESS_DUE: "Due Apr 28, 2024"},
        on_click={INTERNET_TAB: switch_to_internet_same_balance},
    )
    bills = fresh_bills("Wireless", "Internet")

    state = await ProviderWorkflow(catalog.get("Wireless"), make_context(session)).run(bills)

    assert state == WorkflowState.DONE
    assert bills["Wireless"].amount_due == Decimal("0.00")
    assert bills["Internet"].amount_due == Decimal("0.00")
    assert bills["Wireless"].due_date == datetime(2024, 4, 29, tzinfo=timezone.utc)
    assert bills["Internet"].due_date == datetime(2024, 5, 4, tzinfo=timezone.utc)
    assert bills["Wireless"].retrieved and bills["Internet"].retrieved


@pytest.mark.asyncio
async def test_workflow_shared_session_no_partial_commit(catalog, make_context):
    """Test a second record that never loads leaves both bills untouched."""
    session = FakeSession(
        present={"#userID", "#password", "#chooseMethodMakePaymentButton", ".page-title", WIRELESS_AMOUNT, WIRELESS_DUE},
        texts={WIRELESS_AMOUNT: "$142.18", WIRELESS_DUE: "Due Apr 28, 2024"},
    )
    bills = fresh_bills("Wireless", "Internet")

    workflow = ProviderWorkflow(catalog.get("Wireless"), make_context(session))
    state = await workflow.run(bills)

    assert state == WorkflowState.FAILED
    assert workflow.failed_at == WorkflowState.EXTRACT
    assert_untouched(bills["Wireless"])
    assert_untouched(bills["Internet"])


@pytest.mark.asyncio
async def test_fixed_bill(catalog, make_context):
    """Test the fixed monthly bill needs no browser."""
    session = FakeSession()
    context = make_context(session)
    context.clock = lambda: datetime(2024, 5, 20, tzinfo=timezone.utc)
    bills = fresh_bills("Car")

    state = await ProviderWorkflow(catalog.get("Car"), context).run(bills)

    assert state == WorkflowState.DONE
    assert bills["Car"].amount_due == Decimal("422.94")
    assert bills["Car"].due_date == datetime(2024, 6, 17, tzinfo=timezone.utc)
    assert bills["Car"].retrieved is True
    assert session.calls == []


@pytest.mark.asyncio
async def test_workflow_stops_when_cancelled(catalog, make_context):
    """Test the cancel token is honoured between states."""
    session = FakeSession(**GAS_PAGE)
    context = make_context(session)
    context.cancel.cancel(CancelReason.INTERRUPT)
    bills = fresh_bills("Gas")

    with pytest.raises(RunCancelled):
        await ProviderWorkflow(catalog.get("Gas"), context).run(bills)

    assert session.calls == []
    assert_untouched(bills["Gas"])


@pytest.mark.asyncio
async def test_failure_screenshot_saved(catalog, make_context, test_settings, tmp_path):
    """Test a failed workflow stores a screenshot when configured."""
    settings = test_settings.model_copy(update={"screenshot_dir": str(tmp_path)})
    session = FakeSession()
    bills = fresh_bills("Gas")

    state = await ProviderWorkflow(catalog.get("Gas"), make_context(session, settings=settings)).run(bills)

    assert state == WorkflowState.FAILED
    screenshots = list(tmp_path.glob("gas-*.png"))
    assert len(screenshots) == 1
    assert screenshots[0].read_bytes() == b"\x89PNG"
