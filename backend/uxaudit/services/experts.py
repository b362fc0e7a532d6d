"""Audit experts: one structured Gemini call per analysis stage."""
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from uxaudit.services import audit_constants as C
from uxaudit.services.llm_client import call_api

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 60000
MAX_COMPETITOR_TEXT = 15000
MAX_COMPETITOR_IMAGES = 10

UX_KEY = "UX Audit expert"
PRODUCT_KEY = "Product Audit expert"
VISUAL_KEY = "Visual Audit expert"
STRATEGY_KEY = "Strategy Audit expert"
ACCESSIBILITY_KEY = "Accessibility Audit expert"
COMPETITOR_KEY = "Competitor Analysis expert"
CONTEXTUAL_KEY = "Top5ContextualIssues"


@dataclass(frozen=True)
class Expert:
    mode: str
    key: str
    label: str
    schema: dict
    issues_field: Optional[str] = None
    issue_source: Optional[str] = None


STANDARD_EXPERTS: tuple[Expert, ...] = (
    Expert("ux", UX_KEY, "UX", C.UX_AUDIT_SCHEMA, "Top5CriticalUXIssues", "UX Audit"),
    Expert("product", PRODUCT_KEY, "PRODUCT", C.PRODUCT_AUDIT_SCHEMA, "Top5CriticalProductIssues", "Product Audit"),
    Expert("visual", VISUAL_KEY, "VISUAL", C.VISUAL_AUDIT_SCHEMA, "Top5CriticalVisualIssues", "Visual Design"),
    Expert("strategy", STRATEGY_KEY, "STRATEGY", C.STRATEGY_AUDIT_SCHEMA),
    Expert("accessibility", ACCESSIBILITY_KEY, "ACCESSIBILITY", C.ACCESSIBILITY_AUDIT_SCHEMA,
           "Top5CriticalAccessibilityIssues", "Accessibility Audit"),
)

COMPETITOR_EXPERT = Expert("competitor", COMPETITOR_KEY, "COMPETITOR", C.COMPETITOR_AUDIT_SCHEMA)

EXPERT_KEYS = tuple(e.key for e in STANDARD_EXPERTS)


def is_multi_page(live_text: Optional[str]) -> bool:
    return bool(live_text) and (
        "--- START CONTENT FROM" in live_text or "--- CONTENT FROM" in live_text
    )


def truncate_text(text: Optional[str], limit: int = MAX_TEXT_LENGTH) -> str:
    text = text or ""
    if len(text) > limit:
        return text[:limit] + "\n...[truncated for length]..."
    return text


def website_context_prompt(context: dict) -> str:
    """Site facts shared by the visual/UX/product/accessibility experts."""
    lines = ["### Website Context ###", f"- URL: {context.get('url', '')}"]

    perf = context.get("performance_data")
    if perf:
        lines.append("- Performance (PageSpeed, desktop): " + ", ".join(
            f"{k.upper()}={v}" for k, v in perf.items()
        ))
    elif context.get("performance_error"):
        lines.append(f"- Performance data unavailable: {context['performance_error']}")

    if context.get("animation_data"):
        lines.append(f"- Animation data: {json.dumps(context['animation_data'])}")
    if context.get("accessibility_data"):
        lines.append(f"- Accessibility metadata: {json.dumps(context['accessibility_data'])}")
    if is_multi_page(context.get("live_text")):
        lines.append("- Content spans multiple pages.")
    return "\n".join(lines) + "\n"


def _instruction_for(expert: Expert, context: dict) -> str:
    mobile = bool(context.get("mobile_screenshot"))
    multi = is_multi_page(context.get("live_text"))
    if expert.mode == "ux":
        return C.ux_instruction(mobile, multi)
    if expert.mode == "product":
        return C.product_instruction(multi)
    if expert.mode == "visual":
        return C.visual_instruction(mobile, multi)
    if expert.mode == "accessibility":
        return C.accessibility_instruction(multi)
    raise ValueError(f"Unknown expert mode: {expert.mode}")


async def perform_analysis(
    credentials: Sequence[str],
    expert: Expert,
    context: dict,
    call: Callable[..., Any] = call_api,
) -> Any:
    """Run one standard expert against the analysis context and return its data.

    ``context`` keys: url, screenshot, mobile_screenshot, mime_type, live_text,
    performance_data, performance_error, animation_data, accessibility_data,
    axe_violations.
    """
    if expert.mode == "strategy":
        # Strategy works from the text alone
        return await call(
            credentials, C.strategy_instruction(), truncate_text(context.get("live_text")),
            expert.schema, [], "image/png",
        )

    prompt = website_context_prompt(context)
    if expert.mode == "accessibility" and context.get("axe_violations"):
        prompt += (
            "\n### Automated Axe-Core Accessibility Violations ###\n"
            f"{json.dumps(context['axe_violations'], indent=2)}\n"
        )
    full_content = f"{prompt}\n### Live Website Text Content ###\n{truncate_text(context.get('live_text'))}"
    images = [img for img in (context.get("screenshot"), context.get("mobile_screenshot")) if img]
    return await call(
        credentials, _instruction_for(expert, context), full_content, expert.schema,
        images, context.get("mime_type", "image/jpeg"),
    )


async def perform_competitor_analysis(
    credentials: Sequence[str],
    primary: dict,
    competitor: dict,
    mime_type: str = "image/jpeg",
    call: Callable[..., Any] = call_api,
) -> Any:
    """One combined call comparing two sites.

    ``primary`` / ``competitor``: {url, live_text, screenshots: [base64]}.
    """
    content = (
        "\n### PRIMARY WEBSITE ###\n"
        f"- URL: {primary['url']}\n"
        f"- Content: {(primary.get('live_text') or '')[:MAX_COMPETITOR_TEXT]}... (truncated)\n"
        "\n### COMPETITOR WEBSITE ###\n"
        f"- URL: {competitor['url']}\n"
        f"- Content: {(competitor.get('live_text') or '')[:MAX_COMPETITOR_TEXT]}... (truncated)\n"
    )
    images = [*primary.get("screenshots", []), *competitor.get("screenshots", [])]
    return await call(
        credentials, C.competitor_instruction(), content, COMPETITOR_EXPERT.schema,
        images[:MAX_COMPETITOR_IMAGES], mime_type,
    )


def collect_critical_issues(report: dict) -> list[dict]:
    """Flatten every expert's Top-5 list, tagging each issue with its source."""
    issues = []
    for expert in STANDARD_EXPERTS:
        if not expert.issues_field:
            continue
        data = report.get(expert.key)
        if not isinstance(data, dict):
            continue
        for issue in data.get(expert.issues_field) or []:
            if isinstance(issue, dict):
                issues.append({**issue, "source": expert.issue_source})
    return issues


def strategy_context(strategy: dict) -> str:
    purpose = strategy.get("PurposeAnalysis") or {}
    audience = strategy.get("TargetAudience") or {}
    return (
        f"- Website Purpose: {', '.join(purpose.get('PrimaryPurpose') or [])}\n"
        f"- Key Objectives: {purpose.get('KeyObjectives', '')}\n"
        f"- Target Audience: {', '.join(audience.get('Primary') or [])} "
        f"({audience.get('DemographicsPsychographics', '')})\n"
        f"- Website Type: {audience.get('WebsiteType', '')}"
    )


async def rank_contextual_issues(
    credentials: Sequence[str],
    strategy: dict,
    issues: list[dict],
    call: Callable[..., Any] = call_api,
) -> Any:
    """Pick the top 5 cross-cutting issues given the site's strategy."""
    contents = C.CONTEXTUAL_RANK_TASK.format(
        strategy_context=strategy_context(strategy),
        issues_json=json.dumps(issues, indent=2),
    )
    return await call(credentials, C.CONTEXTUAL_RANK_INSTRUCTION, contents, C.CONTEXTUAL_RANK_SCHEMA)
