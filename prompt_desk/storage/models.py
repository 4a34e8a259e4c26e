"""
Data models for storage layer.

Defines the history record and its JSON form.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from prompt_desk.core.token_counter import TokenUsage


def new_record_id() -> str:
    return uuid.uuid4().hex


def _parse_rating(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ValueError(f"rating must be an integer between 1 and 5, got {value!r}")
    return value


@dataclass(frozen=True)
class PromptRecord:
    """Completed prompt/response pair with usage and cost.

    Records are immutable once written. Rating and notes are the only
    user-editable fields and are changed by producing a replaced copy.
    """
    prompt_text: str
    resolved_prompt: str
    response: str
    usage: TokenUsage
    estimated_cost: Decimal
    model: str
    variables: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=new_record_id)
    extracted: Optional[str] = None
    rating: Optional[int] = None
    notes: Optional[str] = None

    def annotated(self, rating: Optional[int] = None, notes: Optional[str] = None) -> "PromptRecord":
        """Return a copy with rating and/or notes updated.

        Raises:
            ValueError: If rating is outside 1..5
        """
        if rating is not None and not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")
        return replace(
            self,
            rating=self.rating if rating is None else rating,
            notes=self.notes if notes is None else notes
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "id": self.id,
            "prompt_text": self.prompt_text,
            "resolved_prompt": self.resolved_prompt,
            "variables": dict(self.variables),
            "response": self.response,
            "usage": {
                "input": self.usage.input_tokens,
                "output": self.usage.output_tokens
            },
            "estimated_cost": str(self.estimated_cost),
            "model": self.model,
            "timestamp": self.timestamp.isoformat(),
            "extracted": self.extracted,
            "rating": self.rating,
            "notes": self.notes
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptRecord":
        """Rebuild a record from its serialized form.

        Raises:
            KeyError, TypeError, ValueError: If the data is malformed
        """
        usage = data["usage"]
        return cls(
            id=str(data["id"]),
            prompt_text=data["prompt_text"],
            resolved_prompt=data["resolved_prompt"],
            variables={str(k): str(v) for k, v in data.get("variables", {}).items()},
            response=data["response"],
            usage=TokenUsage(
                input_tokens=int(usage["input"]),
                output_tokens=int(usage["output"])
            ),
            estimated_cost=Decimal(str(data["estimated_cost"])),
            model=data["model"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            extracted=data.get("extracted"),
            rating=_parse_rating(data.get("rating")),
            notes=data.get("notes")
        )
