"""Page scraping (Playwright) and PageSpeed Insights performance checks."""
import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

import aiohttp

from uxaudit.config import settings

logger = logging.getLogger(__name__)

DESKTOP_VIEWPORT = {"width": 1920, "height": 1080}
MOBILE_VIEWPORT = {"width": 390, "height": 844}
MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
NAVIGATION_TIMEOUT_MS = 60_000
DEFAULT_TIMEOUT_MS = 30_000
NETWORK_IDLE_WAIT_MS = 2_000
AXE_TIMEOUT_SECONDS = 20
SCREENSHOT_QUALITY = 50

PAGESPEED_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
PAGESPEED_TIMEOUT_SECONDS = 60
PAGESPEED_METRICS = {
    "lcp": "largest-contentful-paint",
    "cls": "cumulative-layout-shift",
    "tbt": "total-blocking-time",
    "fcp": "first-contentful-paint",
    "tti": "interactive",
    "si": "speed-index",
}

_SCROLL_SCRIPT = """
async () => {
    await new Promise((resolve) => {
        let total = 0, scrolls = 0;
        const timer = setInterval(() => {
            window.scrollBy(0, 250);
            total += 250; scrolls += 1;
            if (total >= document.body.scrollHeight || scrolls >= 15) {
                clearInterval(timer);
                resolve();
            }
        }, 100);
    });
    document.querySelectorAll('*').forEach((el) => {
        const pos = window.getComputedStyle(el).position;
        if (pos === 'fixed' || pos === 'sticky') el.style.position = 'absolute';
    });
    window.scrollTo(0, 0);
}
"""

_PAGE_DATA_SCRIPT = """
(collectExtras) => {
    const liveText = document.body ? document.body.innerText : '';
    if (!collectExtras) return { liveText, animationData: null, accessibilityData: null };
    const animationData = Array.from(document.querySelectorAll('*')).filter((el) => {
        const s = window.getComputedStyle(el);
        const transition = s.getPropertyValue('transition-property');
        return s.getPropertyValue('animation-name') !== 'none' || (transition !== 'all' && transition !== '');
    }).map((el) => el.tagName.toLowerCase() + (el.id ? '#' + el.id : '')).slice(0, 20);
    const accessibilityData = {
        imagesMissingAlt: document.querySelectorAll('img:not([alt])').length,
        hasSemanticElements: !!document.querySelector('main, nav, header, footer, article, section, aside'),
        hasAriaAttributes: !!document.querySelector('[role], [aria-label], [aria-labelledby], [aria-describedby]'),
    };
    return { liveText, animationData, accessibilityData };
}
"""

_AXE_RUN_SCRIPT = """
async () => {
    const results = await window.axe.run(document, { resultTypes: ['violations'] });
    return results.violations.map((v) => ({
        id: v.id, impact: v.impact, description: v.description, help: v.help,
        nodes: v.nodes.length,
    }));
}
"""


class ScrapeError(RuntimeError):
    """Raised when a page cannot be loaded or captured."""
    pass


@dataclass
class ScrapeResult:
    screenshot: dict
    live_text: str = ""
    animation_data: Optional[list] = None
    accessibility_data: Optional[dict] = None
    axe_violations: list = field(default_factory=list)


@dataclass
class PerformanceResult:
    performance_data: Optional[dict] = None
    error: Optional[str] = None


async def _run_axe(page) -> list:
    """Axe-core violations, when an axe script is configured. Soft-fails."""
    if not settings.AXE_SCRIPT_PATH:
        return []
    try:
        await page.add_script_tag(path=settings.AXE_SCRIPT_PATH)
        return await asyncio.wait_for(page.evaluate(_AXE_RUN_SCRIPT), AXE_TIMEOUT_SECONDS)
    except Exception as e:
        logger.warning(f"[SCRAPE] Axe-core failed (continuing audit): {e}")
        return []


async def _capture(page, url: str, is_mobile: bool, collect_extras: bool) -> ScrapeResult:
    await page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
    try:
        await page.wait_for_load_state("networkidle", timeout=NETWORK_IDLE_WAIT_MS)
    except Exception:
        pass  # networkidle is best-effort

    try:
        await page.evaluate(_SCROLL_SCRIPT)
    except Exception as e:
        logger.warning(f"[SCRAPE] Scroll failed, continuing: {e}")

    if page.is_closed():
        raise ScrapeError("Page crashed during scraping operations")

    shot = await page.screenshot(type="jpeg", quality=SCREENSHOT_QUALITY, full_page=True)
    screenshot = {
        "path": urlparse(url).path or "/",
        "data": base64.b64encode(shot).decode("ascii"),
        "isMobile": is_mobile,
    }

    try:
        page_data = await page.evaluate(_PAGE_DATA_SCRIPT, collect_extras)
    except Exception as e:
        logger.warning(f"[SCRAPE] Page evaluation failed, using fallback: {e}")
        page_data = {"liveText": "", "animationData": None, "accessibilityData": None}

    axe_violations = await _run_axe(page) if collect_extras else []
    return ScrapeResult(
        screenshot=screenshot,
        live_text=page_data.get("liveText") or "",
        animation_data=page_data.get("animationData"),
        accessibility_data=page_data.get("accessibilityData"),
        axe_violations=axe_violations,
    )


async def perform_scrape(
    url: str,
    is_mobile: bool = False,
    is_first_page: bool = True,
    browser_endpoint: Optional[str] = None,
) -> ScrapeResult:
    """Load ``url`` in a browser and capture screenshot, text and page metadata.

    Connects to a remote browser over CDP when ``browser_endpoint`` is set,
    otherwise launches local headless Chromium.

    Raises:
        ScrapeError: on any navigation/capture failure.
    """
    from playwright.async_api import async_playwright

    view = "MOBILE" if is_mobile else "DESKTOP"
    logger.info(f"[SCRAPE] [{view}] Navigating to {url}")
    try:
        async with async_playwright() as pw:
            if browser_endpoint:
                browser = await pw.chromium.connect_over_cdp(browser_endpoint)
            else:
                browser = await pw.chromium.launch(headless=True)
            try:
                if is_mobile:
                    context = await browser.new_context(
                        viewport=MOBILE_VIEWPORT, is_mobile=True, has_touch=True,
                        user_agent=MOBILE_USER_AGENT,
                    )
                else:
                    context = await browser.new_context(viewport=DESKTOP_VIEWPORT)
                context.set_default_timeout(DEFAULT_TIMEOUT_MS)
                page = await context.new_page()
                try:
                    return await _capture(page, url, is_mobile, is_first_page and not is_mobile)
                finally:
                    await context.close()
            finally:
                await browser.close()
    except ScrapeError as e:
        raise ScrapeError(f"Scraping failed: {e}") from e
    except Exception as e:
        logger.error(f"[SCRAPE] Scraping failed for {url}: {e}")
        raise ScrapeError(f"Scraping failed: {e}") from e


def _extract_metrics(psi_data: dict) -> PerformanceResult:
    lighthouse = psi_data.get("lighthouseResult")
    if not lighthouse:
        error = (psi_data.get("error") or {}).get("message") or "Lighthouse returned an empty result."
        return PerformanceResult(error=error)
    audits = lighthouse.get("audits") or {}
    return PerformanceResult(performance_data={
        name: (audits.get(audit_id) or {}).get("displayValue") or "N/A"
        for name, audit_id in PAGESPEED_METRICS.items()
    })


async def perform_performance_check(
    url: str,
    api_key: str = "",
    secrets: Optional[dict[str, Any]] = None,
) -> PerformanceResult:
    """Google PageSpeed Insights (desktop). Never raises; failures land in ``error``."""
    used_key = (secrets or {}).get("PAGESPEED_API_KEY") or settings.PAGESPEED_API_KEY or api_key
    params = {"url": url, "category": "performance", "strategy": "desktop"}
    if used_key:
        params["key"] = used_key

    masked = f"...{used_key[-4:]}" if used_key else "none"
    logger.info(f"[Performance] Starting audit for {url} (key {masked})")
    try:
        timeout = aiohttp.ClientTimeout(total=PAGESPEED_TIMEOUT_SECONDS)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(PAGESPEED_URL, params=params) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    try:
                        message = (await resp.json(content_type=None)).get("error", {}).get("message")
                    except ValueError:
                        message = None
                    return PerformanceResult(error=message or f"API Error {resp.status}: {body[:300]}")
                return _extract_metrics(await resp.json(content_type=None))
    except asyncio.TimeoutError:
        return PerformanceResult(error="Google PageSpeed Insights API timed out after 1 minute.")
    except Exception as e:
        logger.warning(f"[Performance] Check failed for {url}: {e}")
        return PerformanceResult(error=str(e) or type(e).__name__)
