import pytest

from uxaudit.services.experts import (
    ACCESSIBILITY_KEY,
    MAX_COMPETITOR_IMAGES,
    STANDARD_EXPERTS,
    STRATEGY_KEY,
    UX_KEY,
    collect_critical_issues,
    perform_analysis,
    perform_competitor_analysis,
    rank_contextual_issues,
    truncate_text,
)

from fakes import STRATEGY_PAYLOAD, FakeCallApi, expert_payload


def expert(key):
    return next(e for e in STANDARD_EXPERTS if e.key == key)


def test_catalogue_has_five_standard_experts():
    assert [e.label for e in STANDARD_EXPERTS] == ["UX", "PRODUCT", "VISUAL", "STRATEGY", "ACCESSIBILITY"]


def test_truncate_text():
    assert truncate_text("short") == "short"
    long = "a" * 70000
    out = truncate_text(long)
    assert out.startswith("a" * 60000)
    assert out.endswith("...[truncated for length]...")


@pytest.mark.asyncio
async def test_strategy_gets_text_only():
    call = FakeCallApi()
    context = {"url": "https://x.test", "screenshot": "img", "live_text": "About us"}

    result = await perform_analysis(["k"], expert(STRATEGY_KEY), context, call=call)

    assert result == STRATEGY_PAYLOAD
    assert call.calls[0]["images"] == []
    assert call.calls[0]["content"] == "About us"


@pytest.mark.asyncio
async def test_visual_experts_get_desktop_and_mobile_images():
    call = FakeCallApi()
    context = {"url": "https://x.test", "screenshot": "desk", "mobile_screenshot": "mob", "live_text": "hi"}

    await perform_analysis(["k"], expert(UX_KEY), context, call=call)

    assert call.calls[0]["images"] == ["desk", "mob"]
    assert "https://x.test" in call.calls[0]["content"]


@pytest.mark.asyncio
async def test_accessibility_includes_axe_violations():
    call = FakeCallApi()
    context = {"url": "u", "screenshot": "desk", "live_text": "t",
               "axe_violations": [{"id": "color-contrast", "impact": "serious"}]}

    await perform_analysis(["k"], expert(ACCESSIBILITY_KEY), context, call=call)

    assert "color-contrast" in call.calls[0]["content"]


@pytest.mark.asyncio
async def test_competitor_truncates_text_and_caps_images():
    call = FakeCallApi()
    primary = {"url": "https://a.test", "live_text": "A" * 20000, "screenshots": ["p"] * 8}
    competitor = {"url": "https://b.test", "live_text": "B" * 20000, "screenshots": ["c"] * 8}

    await perform_competitor_analysis(["k"], primary, competitor, call=call)

    sent = call.calls[0]
    assert len(sent["images"]) == MAX_COMPETITOR_IMAGES
    assert "A" * 15000 in sent["content"] and "A" * 15001 not in sent["content"]
    assert "https://b.test" in sent["content"]


def test_collect_critical_issues_tags_sources():
    report = {
        "UX Audit expert": expert_payload("Top5CriticalUXIssues", "UX"),
        "Product Audit expert": None,
        "Visual Audit expert": expert_payload("Top5CriticalVisualIssues", "Visual"),
        STRATEGY_KEY: STRATEGY_PAYLOAD,
    }

    issues = collect_critical_issues(report)

    assert [i["source"] for i in issues] == ["UX Audit", "Visual Design"]


@pytest.mark.asyncio
async def test_contextual_rank_prompt_carries_strategy():
    call = FakeCallApi()

    await rank_contextual_issues(["primary"], STRATEGY_PAYLOAD, [{"Issue": "x"}], call=call)

    sent = call.calls[0]
    assert sent["credentials"] == ["primary"]
    assert "Sell shoes" in sent["content"]
    assert "E-commerce" in sent["content"]
