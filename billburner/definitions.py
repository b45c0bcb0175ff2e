"""Declarative provider workflow definitions.

Each provider in ``providers.yaml`` describes its login page, the steps of
every login phase, an optional email-code challenge and the records to
extract. The workflow interpreter executes these definitions; provider
quirks (typing vs. script input, synthetic events, extra navigation
clicks) are expressed as step options rather than code.

Step syntax (exactly one action key per step)::

    - await: "#selector"            # bounded poll, fails the workflow on timeout
      timeout_ms: 15000
    - await_change: ".balance"      # poll until the text differs from the last read
    - await_change: [".balance", ".due"]   # ... until any of them differs
    - click: "#button"
      script: true                  # element.click() instead of a pointer click
    - input: "#field"
      value: username               # username | password | otp
      script: false                 # assign .value instead of typing
      dispatch_events: true         # fire input/change afterwards
"""

from decimal import Decimal
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

ACTIONS = ("await_", "await_change", "click", "input")


class Step(BaseModel):
    """One browser action inside a workflow phase."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    await_: str | None = Field(default=None, alias="await")
    await_change: str | list[str] | None = None
    click: str | None = None
    input: str | None = None
    value: Literal["username", "password", "otp"] | None = None
    script: bool = False
    dispatch_events: bool = False
    timeout_ms: int | None = None

    @model_validator(mode="after")
    def _check_single_action(self) -> "Step":
        chosen = [name for name in ACTIONS if getattr(self, name) is not None]
        if len(chosen) != 1:
            raise ValueError(f"step must define exactly one of await, await_change, click, input; got {chosen}")
        if self.await_change is not None and not self.selectors:
            raise ValueError("await_change requires at least one selector")
        if self.input is not None and self.value is None:
            raise ValueError("input step requires a value")
        return self

    @property
    def action(self) -> str:
        return next(name.rstrip("_") for name in ACTIONS if getattr(self, name) is not None)

    @property
    def selectors(self) -> list[str]:
        target = next(getattr(self, name) for name in ACTIONS if getattr(self, name) is not None)
        return list(target) if isinstance(target, list) else [target]

    @property
    def selector(self) -> str:
        return self.selectors[0]


class DateRule(BaseModel):
    """Where a due date is displayed and how to read it."""

    model_config = ConfigDict(extra="forbid")

    selector: str
    layout: str
    after: str | None = None
    before: str | None = None
    remove: list[str] = Field(default_factory=list)
    first_token: bool = False
    append_year: bool = False
    script: bool = False


class RecordDefinition(BaseModel):
    """One bill produced by a workflow."""

    model_config = ConfigDict(extra="forbid")

    bill: str
    before: list[Step] = Field(default_factory=list)
    amount: str
    amount_script: bool = False
    due_date: DateRule


class OtpChallenge(BaseModel):
    """Email one-time code challenge shown after the password step."""

    model_config = ConfigDict(extra="forbid")

    mailbox: str
    subject: str
    start: str
    end: str
    request: list[Step] = Field(default_factory=list)
    challenge: str
    timeout_ms: int | None = None
    input: Step
    submit: list[Step] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_input(self) -> "OtpChallenge":
        if self.input.action != "input" or self.input.value != "otp":
            raise ValueError("otp.input must be an input step with value: otp")
        return self


class FixedBill(BaseModel):
    """A bill with a constant amount due on the same day every month."""

    model_config = ConfigDict(extra="forbid")

    amount: Decimal
    due_day: int = Field(ge=1, le=28)


class ProviderDefinition(BaseModel):
    """Everything the workflow interpreter needs for one provider."""

    model_config = ConfigDict(extra="forbid")

    name: str
    shared_with: str | None = None
    fixed: FixedBill | None = None
    login_url: str | None = None
    credentials: str | None = None
    login_form: list[Step] = Field(default_factory=list)
    submit_credentials: list[Step] = Field(default_factory=list)
    post_login: list[Step] = Field(default_factory=list)
    otp: OtpChallenge | None = None
    result: list[Step] = Field(default_factory=list)
    records: list[RecordDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_kind(self) -> "ProviderDefinition":
        if self.shared_with or self.fixed:
            return self
        if not self.login_url or not self.credentials:
            raise ValueError(f"{self.name}: login_url and credentials are required")
        if not self.records:
            raise ValueError(f"{self.name}: at least one record is required")
        return self

    @property
    def runs_workflow(self) -> bool:
        return self.shared_with is None

    @property
    def bill_names(self) -> list[str]:
        if self.fixed:
            return [self.name]
        return [record.bill for record in self.records]


class ProviderCatalog(BaseModel):
    """Ordered provider list; the order is both run order and display order."""

    providers: list[ProviderDefinition]

    @model_validator(mode="after")
    def _check_names(self) -> "ProviderCatalog":
        names = [provider.name for provider in self.providers]
        if len(set(names)) != len(names):
            raise ValueError("provider names must be unique")
        for provider in self.providers:
            if provider.shared_with is None:
                continue
            owner = self.get(provider.shared_with)
            if owner is None or provider.name not in owner.bill_names:
                raise ValueError(
                    f"{provider.name}: shared_with must name a provider that produces it"
                )
        return self

    def get(self, name: str) -> ProviderDefinition | None:
        return next((p for p in self.providers if p.name == name), None)


def load_providers(path: str | Path) -> ProviderCatalog:
    """Load and validate provider definitions from YAML.

    Raises:
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: If a definition is malformed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Providers config not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    return ProviderCatalog.model_validate(data)
