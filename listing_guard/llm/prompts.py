"""Prompt templates for listing moderation.

Templates use ``{placeholder}`` syntax for substitution via ``str.format()``.
Literal braces in the JSON schema are doubled.
"""

import json

# ---------------------------------------------------------------------------
# Listing moderation
# ---------------------------------------------------------------------------

LISTING_MODERATION_PROMPT = """\
You are a strict trust-and-safety moderator for a marketplace listing.
Analyze this listing using both text and attached images.

Listing title: {title}
Listing description: {description}

Policy severity levels:
- critical: illegal items/services, sexual explicit content, child exploitation, \
weapons intended for harm, hard drugs, terror content
- high: regulated goods requiring compliance (alcohol, tobacco, medicine), \
scams/fraud, hate speech, impersonation
- medium: privacy leaks (personal data), misleading claims, counterfeit suspicion, \
unsafe transactions

Output ONLY valid JSON with this exact schema:
{{
  "decision": "clean" | "flagged",
  "severity": "clean" | "medium" | "high" | "critical",
  "flag_profile": true | false,
  "violations": [
    {{
      "code": "short_machine_code",
      "category": "policy_category",
      "severity": "medium" | "high" | "critical",
      "reason": "brief reason"
    }}
  ],
  "summary": "short reviewer summary"
}}

Rules:
1) If uncertain, choose "flagged" and explain.
2) If decision is "clean", severity must be "clean", violations must be [].
3) Set flag_profile=true only for repeated-risk or severe abuse profile risk (typically critical).
4) Do not output markdown, prose, or extra keys.
"""


def build_moderation_prompt(title: str, description: str) -> str:
    """Render the moderation rubric for one listing.

    Title and description are JSON-quoted so seller text cannot break out of
    its field.
    """
    return LISTING_MODERATION_PROMPT.format(
        title=json.dumps(title.strip(), ensure_ascii=False),
        description=json.dumps(description.strip(), ensure_ascii=False),
    )
