"""Parsing and normalization of classifier answers.

The classifier is asked for strict JSON but its strings are free-form. Parsing
tries a strict schema parse, then the first balanced JSON object in the text,
and otherwise fails; free text is never scraped into a decision.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from listing_guard.moderation.models import (
    ModerationDecision,
    ModerationResult,
    ModerationSeverity,
    ModerationSource,
    ModerationViolation,
)

_DECISION_SYNONYMS: dict[str, ModerationDecision] = {
    "clean": ModerationDecision.CLEAN,
    "allow": ModerationDecision.CLEAN,
    "approved": ModerationDecision.CLEAN,
    "flagged": ModerationDecision.FLAGGED,
    "block": ModerationDecision.FLAGGED,
    "blocked": ModerationDecision.FLAGGED,
    "reject": ModerationDecision.FLAGGED,
    "rejected": ModerationDecision.FLAGGED,
    "review": ModerationDecision.REVIEW_NEEDED,
    "review_required": ModerationDecision.REVIEW_NEEDED,
    "review_needed": ModerationDecision.REVIEW_NEEDED,
    "manual_review": ModerationDecision.REVIEW_NEEDED,
}

_SEVERITY_SYNONYMS: dict[str, ModerationSeverity] = {
    "clean": ModerationSeverity.CLEAN,
    "none": ModerationSeverity.CLEAN,
    "low": ModerationSeverity.CLEAN,
    "medium": ModerationSeverity.MEDIUM,
    "med": ModerationSeverity.MEDIUM,
    "moderate": ModerationSeverity.MEDIUM,
    "high": ModerationSeverity.HIGH,
    "critical": ModerationSeverity.CRITICAL,
    "severe": ModerationSeverity.CRITICAL,
}


class ModerationParseError(ValueError):
    """Classifier output is not a usable moderation JSON document."""


# ---------------------------------------------------------------------------
# Wire schema
# ---------------------------------------------------------------------------


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


class ViolationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str = ""
    category: str = ""
    severity: str = ""
    reason: str = ""

    @field_validator("code", "category", "severity", "reason", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _as_text(v)


class ModerationPayload(BaseModel):
    """Shape the moderation prompt asks the classifier to return."""

    model_config = ConfigDict(extra="ignore")

    decision: str = ""
    severity: str = ""
    flag_profile: bool = False
    violations: list[ViolationPayload] = []
    summary: str = ""

    @field_validator("decision", "severity", "summary", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _as_text(v)

    @field_validator("flag_profile", mode="before")
    @classmethod
    def default_flag(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("violations", mode="before")
    @classmethod
    def default_violations(cls, v: Any) -> Any:
        return [] if v is None else v


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_decision(value: str) -> ModerationDecision:
    """Map a free-form decision onto the canonical enum; unknown means flagged."""
    return _DECISION_SYNONYMS.get(value.strip().lower(), ModerationDecision.FLAGGED)


def normalize_severity(value: str) -> ModerationSeverity:
    """Map a free-form severity onto the canonical enum; unknown means medium."""
    return _SEVERITY_SYNONYMS.get(value.strip().lower(), ModerationSeverity.MEDIUM)


def strip_code_fences(text: str) -> str:
    text = text.strip()
    for prefix in ("```json", "```JSON", "```"):
        if text.startswith(prefix):
            text = text[len(prefix):]
            break
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def extract_first_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span, honouring JSON strings."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _decode_payload(text: str) -> ModerationPayload:
    try:
        return ModerationPayload.model_validate_json(text)
    except ValidationError as strict_error:
        candidate = extract_first_json_object(text)
        if candidate is None or candidate == text:
            raise ModerationParseError(f"invalid moderation JSON: {strict_error}") from strict_error
        try:
            return ModerationPayload.model_validate_json(candidate)
        except ValidationError as exc:
            raise ModerationParseError(f"invalid moderation JSON: {exc}") from exc


def apply_consistency_rules(result: ModerationResult) -> ModerationResult:
    """Enforce the invariants between decision, severity and violations."""
    if result.decision == ModerationDecision.CLEAN:
        result.severity = ModerationSeverity.CLEAN
        result.violations = []
        result.flag_profile = False
        return result

    # A held listing never reports clean severity.
    if result.severity == ModerationSeverity.CLEAN:
        result.severity = ModerationSeverity.MEDIUM

    for violation in result.violations:
        if violation.severity == ModerationSeverity.CLEAN:
            violation.severity = result.severity

    if result.severity == ModerationSeverity.CRITICAL:
        result.flag_profile = True
    return result


def parse_moderation_response(raw: str) -> ModerationResult:
    """Parse classifier text into a normalized :class:`ModerationResult`.

    The returned result is tagged ``source=ai``; the caller attaches the
    model id and raw text.
    """
    payload = _decode_payload(strip_code_fences(raw))

    decision = normalize_decision(payload.decision)
    severity = normalize_severity(payload.severity)

    violations = [
        ModerationViolation(
            code=v.code.strip(),
            category=v.category.strip(),
            # Missing item severity inherits the overall one below.
            severity=normalize_severity(v.severity) if v.severity.strip() else ModerationSeverity.CLEAN,
            reason=v.reason.strip(),
        )
        for v in payload.violations
    ]

    summary = payload.summary.strip()
    if not summary:
        summary = (
            "No policy violations detected."
            if decision == ModerationDecision.CLEAN
            else "Potential policy violations detected."
        )

    result = ModerationResult(
        decision=decision,
        severity=severity,
        flag_profile=payload.flag_profile,
        violations=violations,
        summary=summary,
        source=ModerationSource.AI,
    )
    return apply_consistency_rules(result)
