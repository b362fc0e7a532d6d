"""Prompts and response schemas for the audit experts.

All hardcoded system instructions and JSON schemas used by the expert calls
and the contextual re-rank. Separated from experts.py for maintainability.
"""

# ═══════════════════════════════════════════════════════════════
# SHARED SCHEMA PIECES
# ═══════════════════════════════════════════════════════════════

CRITICAL_ISSUE_SCHEMA = {
    "type": "object",
    "properties": {
        "Issue": {"type": "string"},
        "Description": {"type": "string"},
        "Impact": {"type": "string"},
        "Recommendation": {"type": "string"},
        "Severity": {"type": "string", "enum": ["Critical", "High", "Medium", "Low"]},
        "source": {"type": "string"},
    },
    "required": ["Issue", "Description", "Recommendation", "Severity"],
}

_SCORED_PARAMETER = {
    "type": "object",
    "properties": {
        "Parameter": {"type": "string"},
        "Score": {"type": "number"},
        "Analysis": {"type": "string"},
        "Recommendation": {"type": "string"},
    },
    "required": ["Parameter", "Score", "Analysis"],
}


def _expert_schema(issues_field: str) -> dict:
    return {
        "type": "object",
        "properties": {
            "OverallScore": {"type": "number"},
            "Summary": {"type": "string"},
            "Parameters": {"type": "array", "items": _SCORED_PARAMETER},
            issues_field: {"type": "array", "items": CRITICAL_ISSUE_SCHEMA},
        },
        "required": ["OverallScore", "Summary", issues_field],
    }


# ═══════════════════════════════════════════════════════════════
# EXPERT SCHEMAS
# ═══════════════════════════════════════════════════════════════

UX_AUDIT_SCHEMA = _expert_schema("Top5CriticalUXIssues")
PRODUCT_AUDIT_SCHEMA = _expert_schema("Top5CriticalProductIssues")
VISUAL_AUDIT_SCHEMA = _expert_schema("Top5CriticalVisualIssues")
ACCESSIBILITY_AUDIT_SCHEMA = _expert_schema("Top5CriticalAccessibilityIssues")

STRATEGY_AUDIT_SCHEMA = {
    "type": "object",
    "properties": {
        "PurposeAnalysis": {
            "type": "object",
            "properties": {
                "PrimaryPurpose": {"type": "array", "items": {"type": "string"}},
                "KeyObjectives": {"type": "string"},
            },
        },
        "TargetAudience": {
            "type": "object",
            "properties": {
                "Primary": {"type": "array", "items": {"type": "string"}},
                "DemographicsPsychographics": {"type": "string"},
                "WebsiteType": {"type": "string"},
            },
        },
        "ExecutiveSummary": {"type": "string"},
    },
    "required": ["PurposeAnalysis", "TargetAudience"],
}

COMPETITOR_AUDIT_SCHEMA = {
    "type": "object",
    "properties": {
        "ExecutiveSummary": {"type": "string"},
        "PrimaryScore": {"type": "number"},
        "CompetitorScore": {"type": "number"},
        "Comparison": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "Dimension": {"type": "string"},
                    "PrimaryAnalysis": {"type": "string"},
                    "CompetitorAnalysis": {"type": "string"},
                    "Winner": {"type": "string", "enum": ["primary", "competitor", "tie"]},
                },
            },
        },
        "Recommendations": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["ExecutiveSummary", "Comparison"],
}

CONTEXTUAL_RANK_SCHEMA = {"type": "array", "items": CRITICAL_ISSUE_SCHEMA}


# ═══════════════════════════════════════════════════════════════
# SYSTEM INSTRUCTIONS
# ═══════════════════════════════════════════════════════════════

_JSON_ONLY = "Respond ONLY with JSON that matches the provided schema."

_MULTI_PAGE_NOTE = (
    "The text content covers several pages of the same site, each introduced by a "
    "'--- CONTENT FROM' marker. Judge the site as a whole."
)


def ux_instruction(mobile_captured: bool, multi_page: bool) -> str:
    parts = [
        "You are a senior UX Auditor. Evaluate navigation, information architecture, "
        "interaction patterns, forms, feedback and error states from the screenshots and text.",
    ]
    if mobile_captured:
        parts.append("The second screenshot is the mobile viewport; assess responsive behaviour.")
    if multi_page:
        parts.append(_MULTI_PAGE_NOTE)
    parts.append(_JSON_ONLY)
    return "\n".join(parts)


def product_instruction(multi_page: bool) -> str:
    parts = [
        "You are a Product Auditor. Evaluate value proposition clarity, conversion paths, "
        "trust signals, pricing communication and onboarding.",
    ]
    if multi_page:
        parts.append(_MULTI_PAGE_NOTE)
    parts.append(_JSON_ONLY)
    return "\n".join(parts)


def visual_instruction(mobile_captured: bool, multi_page: bool) -> str:
    parts = [
        "You are a Visual Designer. Evaluate hierarchy, typography, colour, spacing, "
        "imagery and brand consistency from the screenshots.",
    ]
    if mobile_captured:
        parts.append("Compare the desktop and mobile screenshots for visual consistency.")
    if multi_page:
        parts.append(_MULTI_PAGE_NOTE)
    parts.append(_JSON_ONLY)
    return "\n".join(parts)


def strategy_instruction() -> str:
    return (
        "You are a Strategy Auditor. From the site text, infer the website's purpose, "
        "key objectives, target audience and website type.\n" + _JSON_ONLY
    )


def accessibility_instruction(multi_page: bool) -> str:
    parts = [
        "You are an Accessibility Auditor (WCAG 2.2 AA). Evaluate contrast, semantics, "
        "keyboard access, alternative text and form labelling. Use the automated "
        "findings when they are provided.",
    ]
    if multi_page:
        parts.append(_MULTI_PAGE_NOTE)
    parts.append(_JSON_ONLY)
    return "\n".join(parts)


def competitor_instruction() -> str:
    return (
        "You are a Competitive UX Analyst. Compare the PRIMARY website against the "
        "COMPETITOR website dimension by dimension and say which one wins each.\n" + _JSON_ONLY
    )


CONTEXTUAL_RANK_INSTRUCTION = (
    "You are a Chief Product Strategist. Your task is to analyze a list of critical issues "
    "identified for a website, considering the site's strategic context. Re-rank these issues "
    "based on which ones have the most significant impact on the website's primary purpose "
    "and ability to serve its target audience."
)

CONTEXTUAL_RANK_TASK = """
### Strategic Context ###
{strategy_context}
### Your Task ###
1. Review the strategic context and each issue in the provided JSON list.
2. Select the TOP 5 issues that represent the most critical barriers to the website's success.
3. Return ONLY these 5 issues, sorted from most to least critical.
4. Return the issues in the exact same JSON structure as they were provided, including all original fields.
5. EXCLUSION CRITERIA: Do NOT select issues primarily about "Screen Reader Compatibility", "Missing Alt Text", or "Missing Form Labels".
### Critical Issues List (JSON) ###
{issues_json}"""
