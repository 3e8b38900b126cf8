from typing import Dict, Any
from datetime import datetime, timezone
import json
import re

from infrastructure.llm.llm_client import LLMClient

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove a markdown code fence wrapped around a model's JSON answer"""

    return _CODE_FENCE.sub("", text.strip()).strip()


def parse_json_response(text: str) -> Any:
    """Parse a model response as JSON; raises ``ValueError`` on malformed output"""

    return json.loads(strip_code_fences(text))


class BaseSubAgent:
    """Base class for the pipeline's model-backed stages"""

    def __init__(self, name: str, description: str, llm: LLMClient):
        self.name = name
        self.description = description
        self.llm = llm
        self.created_at = datetime.now(timezone.utc)
        self.last_active = self.created_at

    def update_activity(self):
        """Update last activity timestamp"""
        self.last_active = datetime.now(timezone.utc)

    def get_info(self) -> Dict[str, Any]:
        """Get agent information"""
        return {
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "last_active": self.last_active.isoformat()
        }
