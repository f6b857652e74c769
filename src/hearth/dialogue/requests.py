"""Request and reply types for the dialogue endpoint."""

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError

Length = Literal["short", "medium", "long"]


class BaseRequest(BaseModel):
    """Fields shared by every action."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")

    user_id: str = Field(alias="userId", min_length=6, max_length=128)
    timezone: str = "UTC"
    request_id: str | None = Field(default=None, alias="requestId", max_length=128)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {value!r}") from e
        return value


class InitRequest(BaseRequest):
    action: Literal["init"]


class SayRequest(BaseRequest):
    action: Literal["say"]
    message: str = Field(min_length=1, max_length=4000)
    length: Length = Field(default="medium", alias="len")


class LearnIdentityRequest(BaseRequest):
    action: Literal["learn_identity"]
    name: str = Field(min_length=1, max_length=80)


class AddFactRequest(BaseRequest):
    action: Literal["add_fact"]
    fact: str = Field(min_length=1, max_length=500)


class NudgeRequest(BaseRequest):
    action: Literal["nudge"]


ChatRequest = Annotated[
    Union[InitRequest, SayRequest, LearnIdentityRequest, AddFactRequest, NudgeRequest],
    Field(discriminator="action"),
]

_chat_request = TypeAdapter(ChatRequest)


def parse_request(data: Any) -> ChatRequest:
    """Validate a JSON body into the request type for its action.

    Raises:
        ValidationError: naming the first offending field.
    """
    try:
        return _chat_request.validate_python(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        loc = [str(part) for part in first.get("loc", ())]
        # Union errors are located under the action tag; the field is last.
        field_name = loc[-1] if loc else None
        raise ValidationError(f"{'.'.join(loc) or 'body'}: {first['msg']}", field=field_name) from e


def parse_stream_request(data: Any) -> SayRequest:
    """Validate a streaming body, which is always a `say`."""
    if not isinstance(data, dict):
        raise ValidationError("body: expected a JSON object")
    request = parse_request({**data, "action": "say"})
    if not isinstance(request, SayRequest):
        raise ValidationError("action: expected say", field="action")
    return request


@dataclass
class Reply:
    """Outcome of one request.

    An empty `text` with `ok=True` is the silent outcome of a denied nudge.
    `error` is an internal flag set when a fallback line was substituted.
    """

    text: str
    ok: bool = True
    error: str | None = None
    identity: dict[str, Any] | None = None
    memory: dict[str, Any] | None = None
    states: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.ok and self.error is not None

    def to_dict(self) -> dict[str, Any]:
        """Response body for the HTTP surface."""
        data: dict[str, Any] = {"ok": self.ok, "reply": self.text}
        if self.identity is not None:
            data["identity"] = self.identity
        if self.memory is not None:
            data["memory"] = self.memory
        if not self.ok and self.error:
            data["error"] = self.error
        return data
