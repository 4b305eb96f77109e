"""Conversation content model.

A conversation is an ordered list of Turns. Each Turn carries a role and an
ordered list of Parts. Parts are a closed set of variants:

- TextPart: visible text
- ThoughtPart: internal model reasoning, never re-submitted to the model
- FunctionCallPart: a tool invocation requested by the model
- FunctionResponsePart: the result of a tool invocation, sent back by the user side

A bare ``Part`` carrying only a ``thought_signature`` is the marker some models
emit for reasoning-only turns.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Author of a Turn."""

    USER = "user"
    MODEL = "model"


@dataclass(kw_only=True)
class Part:
    """Base content part.

    Attributes:
        thought_signature: Opaque reasoning signature attached by the model
    """

    thought_signature: str | None = None

    @property
    def is_empty(self) -> bool:
        """True when the part carries no data at all."""
        return type(self) is Part and self.thought_signature is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {}
        if self.thought_signature is not None:
            data["thought_signature"] = self.thought_signature
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Part":
        """Rebuild the matching Part variant from its serialized form."""
        signature = data.get("thought_signature")
        if "function_call" in data:
            call = data["function_call"]
            return FunctionCallPart(name=call["name"], args=dict(call.get("args") or {}), id=call.get("id"), thought_signature=signature)
        if "function_response" in data:
            resp = data["function_response"]
            return FunctionResponsePart(id=resp["id"], name=resp["name"], response=dict(resp.get("response") or {}), thought_signature=signature)
        if data.get("thought"):
            return ThoughtPart(text=data.get("text", ""), thought_signature=signature)
        if "text" in data:
            return TextPart(text=data["text"], thought_signature=signature)
        return Part(thought_signature=signature)


@dataclass(kw_only=True)
class TextPart(Part):
    """Visible text."""

    text: str

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "text": self.text}


@dataclass(kw_only=True)
class ThoughtPart(Part):
    """Internal model reasoning."""

    text: str

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "text": self.text, "thought": True}


@dataclass(kw_only=True)
class FunctionCallPart(Part):
    """A tool invocation requested by the model.

    Attributes:
        name: Tool name
        args: Tool arguments
        id: Call identifier, synthesized when the call is first observed
    """

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "function_call": {"id": self.id, "name": self.name, "args": self.args}}


@dataclass(kw_only=True)
class FunctionResponsePart(Part):
    """The result of a tool invocation, paired to its call by ``id``."""

    id: str
    name: str
    response: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "function_response": {"id": self.id, "name": self.name, "response": self.response}}


@dataclass
class Turn:
    """One role-tagged entry in conversation history."""

    role: Role
    parts: list[Part] = field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> "Turn":
        """Create a user turn holding a single text part."""
        return cls(role=Role.USER, parts=[TextPart(text=text)])

    @classmethod
    def model(cls, text: str) -> "Turn":
        """Create a model turn holding a single text part."""
        return cls(role=Role.MODEL, parts=[TextPart(text=text)])

    @property
    def function_calls(self) -> list[FunctionCallPart]:
        return [p for p in self.parts if isinstance(p, FunctionCallPart)]

    @property
    def function_responses(self) -> list[FunctionResponsePart]:
        return [p for p in self.parts if isinstance(p, FunctionResponsePart)]

    @property
    def text(self) -> str:
        """Concatenated visible text of the turn."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"role": self.role.value, "parts": [p.to_dict() for p in self.parts]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Turn":
        """Create from dictionary."""
        return cls(role=Role(data["role"]), parts=[Part.from_dict(p) for p in data.get("parts", [])])
