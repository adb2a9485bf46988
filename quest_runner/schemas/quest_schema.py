"""
Quest data model: steps, scripts, logs and definitions.

Steps are a discriminated union keyed on ``kind``. Each kind owns its own
params model, so a step's payload is validated when it is parsed and the
replay code can branch on the concrete step class.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

ChangeType = Literal["url", "dom", "none"]
StepStatus = Literal["success", "failed"]
ValidationKind = Literal["url_contains", "element_visible", "element_hidden", "text_present"]

WAIT_KINDS = frozenset({"wait", "random_wait"})
SELECTOR_KINDS = frozenset({"click", "type_text"})


class StepValidation(BaseModel):
    kind: ValidationKind
    value: str
    timeout_ms: int | None = Field(None, alias="timeoutMs")

    model_config = {"populate_by_name": True}


class ExpectedElement(BaseModel):
    """Snapshot of the element found under a coordinate click."""
    tag: str
    text: str = ""
    stable_id: str | None = Field(None, alias="stableId")

    model_config = {"populate_by_name": True}

    def describe(self) -> str:
        ident = f"#{self.stable_id}" if self.stable_id else ""
        return f'<{self.tag}{ident}> "{self.text[:40]}"'


# ── params per step kind ──────────────────────────

class NavigateParams(BaseModel):
    url: str


class TypeTextParams(BaseModel):
    text: str
    selector: str | None = None
    iframe_selector: str | None = Field(None, alias="iframeSelector")

    model_config = {"populate_by_name": True}


class ClickParams(BaseModel):
    selector: str
    iframe_selector: str | None = Field(None, alias="iframeSelector")

    model_config = {"populate_by_name": True}


class ClickAtCoordinatesParams(BaseModel):
    x: float
    y: float
    description: str | None = None


class ScrollParams(BaseModel):
    direction: Literal["up", "down"] = "down"
    amount: int | None = None


class PressKeyParams(BaseModel):
    key: str


class WaitParams(BaseModel):
    duration: int = 1000


class RandomWaitParams(BaseModel):
    min_ms: int = Field(500, alias="min")
    max_ms: int = Field(2000, alias="max")

    model_config = {"populate_by_name": True}


# ── steps ─────────────────────────────────────────

class _StepBase(BaseModel):
    description: str | None = None
    status: StepStatus = "success"
    timestamp: str | None = None
    expected_change: ChangeType | None = Field(None, alias="expectedChange")
    expected_element: ExpectedElement | None = Field(None, alias="expectedElement")
    validation: StepValidation | None = None

    model_config = {"populate_by_name": True}


class NavigateStep(_StepBase):
    kind: Literal["navigate"] = "navigate"
    params: NavigateParams


class TypeTextStep(_StepBase):
    kind: Literal["type_text"] = "type_text"
    params: TypeTextParams


class ClickStep(_StepBase):
    kind: Literal["click"] = "click"
    params: ClickParams


class ClickAtCoordinatesStep(_StepBase):
    kind: Literal["click_at_coordinates"] = "click_at_coordinates"
    params: ClickAtCoordinatesParams


class ScrollStep(_StepBase):
    kind: Literal["scroll"] = "scroll"
    params: ScrollParams


class PressKeyStep(_StepBase):
    kind: Literal["press_key"] = "press_key"
    params: PressKeyParams


class WaitStep(_StepBase):
    kind: Literal["wait"] = "wait"
    params: WaitParams = Field(default_factory=WaitParams)


class RandomWaitStep(_StepBase):
    kind: Literal["random_wait"] = "random_wait"
    params: RandomWaitParams = Field(default_factory=RandomWaitParams)


QuestStep = Annotated[
    Union[
        NavigateStep,
        TypeTextStep,
        ClickStep,
        ClickAtCoordinatesStep,
        ScrollStep,
        PressKeyStep,
        WaitStep,
        RandomWaitStep,
    ],
    Field(discriminator="kind"),
]

STEP_KINDS = (
    "navigate",
    "type_text",
    "click",
    "click_at_coordinates",
    "scroll",
    "press_key",
    "wait",
    "random_wait",
)

_step_adapter: TypeAdapter = TypeAdapter(QuestStep)


def build_step(kind: str, params: dict, **fields) -> QuestStep:
    """Validate a step from its kind and a raw params dict.

    Raises pydantic.ValidationError for unknown kinds or malformed params.
    """
    return _step_adapter.validate_python({"kind": kind, "params": params, **fields})


def step_params_dict(step: QuestStep) -> dict:
    """Params of a step as a JSON-ready dict using wire names."""
    return step.params.model_dump(by_alias=True, exclude_none=True)


def dump_step(step: QuestStep) -> dict:
    return step.model_dump(by_alias=True, exclude_none=True)


# ── scripts, logs, definitions ─────────────────────

class QuestScript(BaseModel):
    id: str
    name: str
    description: str = ""
    steps: list[QuestStep]
    last_updated: str = Field(alias="lastUpdated")
    expires_at: str | None = Field(None, alias="expiresAt")
    success_criteria: list[StepValidation] | None = Field(None, alias="successCriteria")

    model_config = {"populate_by_name": True}


class QuestLog(BaseModel):
    id: str
    quest_id: str = Field(alias="questId")
    timestamp: str
    duration_seconds: int = Field(alias="durationSeconds")
    status: StepStatus
    steps: list[QuestStep]
    step_count: int = Field(alias="stepCount")
    ai_step_count: int = Field(alias="aiStepCount")
    script_step_count: int = Field(alias="scriptStepCount")
    context: dict[str, str] | None = None
    summary: dict | None = None

    model_config = {"populate_by_name": True, "frozen": True}


class QuestDefinition(BaseModel):
    id: str
    name: str
    description: str = ""
    instructions: str = ""
    script_expiration_days: int | None = Field(None, alias="scriptExpirationDays")
    expected_output: list[str] | None = Field(None, alias="expectedOutput")

    model_config = {"populate_by_name": True}
