import json
import logging
import re
import zlib
from typing import Optional

from groq import Groq


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a rule generator for a referral click review system.
Convert the admin's natural language description into a structured JSON rule
that automatically confirms or rejects newly recorded referral clicks.

The JSON rule must follow this schema:
{
    "id": "unique-rule-id",
    "name": "Human readable name",
    "description": "Full description",
    "trigger": "click_recorded",
    "conditions": {
        "operator": "AND or OR",
        "conditions": [
            {"field": "field.path", "operator": "equals/less_than_or_equal/is_true/is_false", "value": "value"}
        ]
    },
    "actions": [
        {"type": "confirm_click or reject_click", "params": {}}
    ]
}

Available fields: click.utm_source, click.utm_medium, click.utm_campaign, click.is_my_referral,
app.name, app.category (payments/gaming/shopping/other), app.bonus_amount, actor.is_authenticated
Available actions: confirm_click, reject_click, send_notification

Return ONLY valid JSON, no explanations."""

CATEGORIES = ("payments", "gaming", "shopping")


class LLMParser:
    def __init__(self, api_key: Optional[str] = None, model: str = "llama-3.3-70b-versatile"):
        self.api_key = api_key
        self.model = model
        self.client = Groq(api_key=api_key) if api_key else None

    @property
    def is_available(self) -> bool:
        return self.client is not None

    def parse(self, natural_language: str) -> dict:
        if self.client:
            parsed = self._parse_with_groq(natural_language)
            if parsed:
                return parsed
        return self._parse_locally(natural_language)

    def _parse_with_groq(self, text: str) -> dict:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": text}
                ],
                temperature=0.1,
                max_tokens=1024
            )
        except Exception as e:
            logger.warning(f"Groq error, falling back to local parser: {e}")
            return {}
        return self._extract_json(response.choices[0].message.content or "")

    def _extract_json(self, text: str) -> dict:
        json_match = re.search(r'\{[\s\S]*\}', text)
        if json_match:
            try:
                return json.loads(json_match.group())
            except json.JSONDecodeError:
                logger.warning("Groq returned malformed JSON")
        return {}

    def _parse_locally(self, text: str) -> dict:
        text_lower = text.lower()

        conditions = []
        if "anonymous" in text_lower or "logged out" in text_lower:
            conditions.append({"field": "actor.is_authenticated", "operator": "is_false"})
        elif any(k in text_lower for k in ("signed in", "logged in", "authenticated", "members")):
            conditions.append({"field": "actor.is_authenticated", "operator": "is_true"})
        if "my referral" in text_lower or "premium" in text_lower:
            conditions.append({"field": "click.is_my_referral", "operator": "is_true"})
        for category in CATEGORIES:
            if category in text_lower:
                conditions.append({"field": "app.category", "operator": "equals", "value": category})

        bonus_match = re.search(r'(?:bonus|reward)[^\d]{0,30}?(?:under|below|up to|at most|<=?)\s*(?:₹|rs\.?|inr)?\s*(\d+)', text_lower)
        if bonus_match:
            conditions.append({"field": "app.bonus_amount", "operator": "less_than_or_equal", "value": int(bonus_match.group(1))})

        source_match = re.search(r'(?:source|utm_source)\s*(?:is|=|:)?\s*["\']?([a-z0-9_-]+)', text_lower)
        if source_match:
            conditions.append({"field": "click.utm_source", "operator": "equals", "value": source_match.group(1)})

        if not conditions:
            conditions.append({"field": "actor.is_authenticated", "operator": "is_true"})

        action = "reject_click" if any(k in text_lower for k in ("reject", "decline", "block")) else "confirm_click"

        return {
            "id": f"rule-{zlib.crc32(text.encode()) % 10000:04d}",
            "name": " ".join(text.split()[:5]).title(),
            "description": text,
            "trigger": "click_recorded",
            "conditions": {"operator": "AND", "conditions": conditions} if len(conditions) > 1 else conditions[0],
            "actions": [{"type": action, "params": {}}]
        }
