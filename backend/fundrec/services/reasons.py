"""Human-readable explanations for personalization reason codes."""

from datetime import datetime

from fundrec.models.funding_program import FundingProgram
from fundrec.services.contextual_scorer import days_until_deadline

CATEGORY_LABELS = {
    "BIO_HEALTH": "Bio & Health",
    "ICT": "ICT",
    "MANUFACTURING": "Manufacturing & Materials",
    "ENERGY": "Energy & Environment",
    "AEROSPACE": "Aerospace",
    "DEFENSE": "Defense",
    "AGRICULTURE": "Agriculture & Fisheries",
    "GENERAL": "General",
}

REASON_TEMPLATES = {
    "CATEGORY_AFFINITY_HIGH": "A {category} program, a field you have shown interest in recently.",
    "CATEGORY_AFFINITY_LOW": "{category} is a field you have shown little interest in recently.",
    "KEYWORD_MATCH_STRONG": "Related to keywords you are interested in.",
    "KEYWORD_MATCH_MODERATE": "Partly related to keywords you are interested in.",
    "MINISTRY_PREFERENCE_HIGH": "A {ministry} announcement, which you check often.",
    "MINISTRY_PREFERENCE_LOW": "You have shown little interest in {ministry} announcements recently.",
    "NEW_PROGRAM": "Newly registered program.",
    "DEADLINE_URGENT": "Closes in {days} days.",
    "DEADLINE_SOON": "Closes in {days} days.",
    "TRENDING": "Getting a lot of attention this week.",
    "CF_BOOST": "Often saved together with programs you saved.",
}


def category_label(category: str | None) -> str:
    if not category:
        return ""
    return CATEGORY_LABELS.get(category, category)


def explain_reason(reason: str, program: FundingProgram, now: datetime | None = None) -> str:
    """Render one reason code; unknown codes render as an empty string."""
    template = REASON_TEMPLATES.get(reason)
    if not template:
        return ""
    return template.format(
        category=category_label(program.category),
        ministry=program.ministry or "ministry",
        days=days_until_deadline(program, now),
    )


def explain_reasons(reasons: list[str], program: FundingProgram, now: datetime | None = None) -> list[str]:
    return [text for text in (explain_reason(r, program, now) for r in reasons) if text]
