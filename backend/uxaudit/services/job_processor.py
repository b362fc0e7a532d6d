"""Audit pipeline: scrape -> experts -> contextual re-rank -> finalize.

One call of process_audit_job drives one job from pending to a terminal
status. Every stage appends a log line (and its partial result) to the job
record as soon as it finishes, so pollers see results incrementally. Stage
failures are split into fatal ones (scrape, missing credentials or upload
data, competitor inputs) that fail the job, and soft ones (performance, a
single expert, contextual re-rank, screenshot upload) that are recorded in
the report while the job carries on.
"""
import asyncio
import base64
import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from uxaudit.config import settings
from uxaudit.schemas.audit import pick_competitor_pair
from uxaudit.services import job_store
from uxaudit.services.experts import (
    COMPETITOR_EXPERT,
    CONTEXTUAL_KEY,
    STANDARD_EXPERTS,
    STRATEGY_KEY,
    Expert,
    collect_critical_issues,
    perform_analysis,
    perform_competitor_analysis,
    rank_contextual_issues,
)
from uxaudit.services.file_storage import FileStorageService, file_storage
from uxaudit.services.llm_client import MissingCredentialsError, call_api
from uxaudit.services.scraper import perform_performance_check, perform_scrape

logger = logging.getLogger(__name__)

UPLOAD_TEXT = "Content extracted from uploaded image."
UPLOAD_URL_LABEL = "Uploaded Image"
FINAL_LOG_MESSAGE = "✓ Job complete. Report ready."
ERROR_MESSAGE_LIMIT = 2000
TERMINAL_WRITE_ATTEMPTS = 3


class UploadDataMissingError(ValueError):
    pass


class CompetitorInputError(ValueError):
    pass


def safe_error_message(e: BaseException, fallback: str = "Audit interrupted") -> str:
    """Extract a meaningful error message from an exception.

    Some exceptions produce an empty str(e); fall back to the class name.
    """
    msg = str(e).strip()
    if not msg:
        msg = f"{type(e).__name__}: {fallback}"
    return msg


async def download_as_base64(url: str) -> Optional[str]:
    """Fetch a pre-uploaded input file. None on any failure."""
    try:
        timeout = aiohttp.ClientTimeout(total=60)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as resp:
                if resp.status != 200:
                    logger.warning(f"Pre-uploaded input {url} returned HTTP {resp.status}")
                    return None
                return base64.b64encode(await resp.read()).decode("ascii")
    except Exception as e:
        logger.error(f"Failed to fetch pre-uploaded input {url}: {e}")
        return None


@dataclass
class PipelineDeps:
    """Collaborators of the pipeline; tests swap in fakes."""
    scrape: Callable[..., Awaitable[Any]] = perform_scrape
    performance_check: Callable[..., Awaitable[Any]] = perform_performance_check
    call_api: Callable[..., Awaitable[Any]] = call_api
    download: Callable[[str], Awaitable[Optional[str]]] = download_as_base64
    storage: FileStorageService = field(default_factory=lambda: file_storage)
    credentials: Optional[list[str]] = None
    batch_size: int = settings.EXPERT_BATCH_SIZE
    batch_pause: float = settings.EXPERT_BATCH_PAUSE
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep


@dataclass
class _RunState:
    job_id: str
    deps: PipelineDeps
    credentials: list[str]
    release_browser: Callable[[], Awaitable[None]]
    url: str = ""
    competitor_url: Optional[str] = None
    screenshots: list[dict] = field(default_factory=list)
    mime_type: str = "image/jpeg"
    results: dict = field(default_factory=dict)
    expert_errors: dict = field(default_factory=dict)

    async def log(self, message: str, partial: Optional[dict] = None) -> Optional[dict]:
        return await job_store.append_progress(self.job_id, message, partial)


# ── Screenshots ──────────────────────────────────────────────────

async def upload_screenshots(
    job_id: str, screenshots: list[dict], mime_type: str, storage: FileStorageService
) -> list[dict]:
    """Move inline screenshots to file storage.

    Already-uploaded entries are left alone, so calling this twice is safe. A
    failed upload keeps that screenshot's inline base64.
    """
    uploaded = []
    for idx, shot in enumerate(screenshots):
        if shot.get("url") or not shot.get("data"):
            uploaded.append(shot)
            continue
        label = "mobile" if shot.get("isMobile") else f"desktop-{idx}"
        try:
            url = await storage.save_screenshot(job_id, shot["data"], mime_type, label)
        except Exception as e:
            logger.warning(f"[Job {job_id}] Screenshot upload failed ({label}), keeping inline data: {e}")
            uploaded.append(shot)
            continue
        record = {k: v for k, v in shot.items() if k != "data"}
        record["url"] = url
        uploaded.append(record)
    return uploaded


# ── Standard audit ───────────────────────────────────────────────

async def _run_expert(state: _RunState, expert: Expert, context: dict) -> None:
    await state.log(f"Running {expert.label}...")
    try:
        data = await perform_analysis(state.credentials, expert, context, call=state.deps.call_api)
    except Exception as e:
        message = safe_error_message(e)
        logger.warning(f"[Job {state.job_id}] ✗ {expert.label} failed: {message[:300]}")
        state.results[expert.key] = None
        state.expert_errors[expert.key] = message[:ERROR_MESSAGE_LIMIT]
        await state.log(
            f"✗ {expert.label} failed: {message[:200]}",
            {expert.key: None, "expertErrors": dict(state.expert_errors)},
        )
        return
    state.results[expert.key] = data
    await state.log(f"✓ {expert.label} complete.", {expert.key: data})


async def _run_experts(state: _RunState, context: dict) -> None:
    """Five experts in fixed-size batches, with a pause between batches."""
    size = max(1, state.deps.batch_size)
    experts = list(STANDARD_EXPERTS)
    for start in range(0, len(experts), size):
        batch = experts[start:start + size]
        await asyncio.gather(*(_run_expert(state, expert, context) for expert in batch))
        if start + size < len(experts) and state.deps.batch_pause > 0:
            await state.deps.sleep(state.deps.batch_pause)


async def _run_contextual_rank(state: _RunState) -> None:
    strategy = state.results.get(STRATEGY_KEY)
    if not isinstance(strategy, dict):
        return
    issues = collect_critical_issues(state.results)
    if not issues:
        return
    await state.log("Running contextual impact analysis...")
    try:
        ranked = await rank_contextual_issues(
            state.credentials[:1], strategy, issues, call=state.deps.call_api
        )
    except Exception as e:
        logger.warning(f"[Job {state.job_id}] Contextual rank failed: {e}")
        await state.log("⚠ Contextual analysis skipped due to error.")
        return
    state.results[CONTEXTUAL_KEY] = ranked
    await state.log("✓ Contextual analysis complete.", {CONTEXTUAL_KEY: ranked})


async def _prepare_url_input(state: _RunState, url: str, browser_endpoint: Optional[str]) -> dict:
    deps = state.deps
    state.url = url
    await state.log(f"Scraping {url}...")
    desktop = await deps.scrape(url, False, True, browser_endpoint)
    await state.log("Scraping Mobile view...")
    mobile = await deps.scrape(url, True, True, browser_endpoint)
    await state.release_browser()

    state.mime_type = "image/jpeg"
    state.screenshots = await upload_screenshots(
        state.job_id, [dict(desktop.screenshot), dict(mobile.screenshot)], state.mime_type, deps.storage
    )
    await state.log("✓ Scrape complete. Analyzing content...", {
        "url": url,
        "screenshots": state.screenshots,
        "screenshotMimeType": state.mime_type,
    })

    await state.log("Running performance check...")
    perf = await deps.performance_check(url, state.credentials[0])
    state.results["performanceData"] = perf.performance_data
    state.results["performanceError"] = perf.error
    if perf.error:
        await state.log(f"⚠ Performance check unavailable: {perf.error[:200]}", {
            "performanceData": perf.performance_data, "performanceError": perf.error,
        })
    else:
        await state.log("✓ Performance check complete.", {
            "performanceData": perf.performance_data, "performanceError": None,
        })

    return {
        "url": url,
        "screenshot": desktop.screenshot.get("data"),
        "mobile_screenshot": mobile.screenshot.get("data"),
        "mime_type": state.mime_type,
        "live_text": desktop.live_text,
        "animation_data": desktop.animation_data,
        "accessibility_data": desktop.accessibility_data,
        "axe_violations": desktop.axe_violations,
        "performance_data": perf.performance_data,
        "performance_error": perf.error,
    }


async def _prepare_upload_input(state: _RunState, upload: dict) -> dict:
    await state.release_browser()
    data = (upload.get("filesData") or [None])[0] or upload.get("fileData")
    if not data and upload.get("fileUrls"):
        data = await state.deps.download(upload["fileUrls"][0])
    if not data:
        raise UploadDataMissingError("No file data provided")
    if data.startswith("data:"):
        data = data.split(",", 1)[-1]

    state.url = UPLOAD_URL_LABEL
    state.mime_type = "image/png"
    state.screenshots = await upload_screenshots(
        state.job_id, [{"path": "/", "data": data, "isMobile": False}], state.mime_type, state.deps.storage
    )
    await state.log("Processing uploaded image...", {
        "url": state.url,
        "screenshots": state.screenshots,
        "screenshotMimeType": state.mime_type,
    })
    return {
        "url": UPLOAD_URL_LABEL,
        "screenshot": data,
        "mime_type": state.mime_type,
        "live_text": UPLOAD_TEXT,
    }


async def _run_standard(state: _RunState, inputs: list[dict], browser_endpoint: Optional[str]) -> None:
    await state.log("Starting Standard Analysis...")
    first = inputs[0]
    if first.get("type") == "url":
        context = await _prepare_url_input(state, first["url"], browser_endpoint)
    else:
        context = await _prepare_upload_input(state, first)
    await _run_experts(state, context)
    await _run_contextual_rank(state)


# ── Competitor audit ─────────────────────────────────────────────

async def _run_competitor(state: _RunState, inputs: list[dict], browser_endpoint: Optional[str]) -> None:
    deps = state.deps
    await state.log("Starting Competitor Analysis...")
    primary, competitor = pick_competitor_pair(inputs)
    if not primary or not competitor:
        raise CompetitorInputError("Competitor audit requires two URLs (primary and competitor).")
    state.url = primary["url"]
    state.competitor_url = competitor["url"]

    await state.log(f"Scraping Primary Site: {state.url}...")
    primary_scrape = await deps.scrape(state.url, False, True, browser_endpoint)
    await state.log(f"Scraping Competitor Site: {state.competitor_url}...")
    competitor_scrape = await deps.scrape(state.competitor_url, False, True, browser_endpoint)
    await state.release_browser()

    state.mime_type = "image/jpeg"
    state.screenshots = await upload_screenshots(
        state.job_id,
        [dict(primary_scrape.screenshot), dict(competitor_scrape.screenshot)],
        state.mime_type,
        deps.storage,
    )
    await state.log("Analyzed content acquired. Starting AI comparison...", {
        "url": state.url,
        "competitorUrl": state.competitor_url,
        "screenshots": state.screenshots,
        "screenshotMimeType": state.mime_type,
    })

    await state.log(f"Running {COMPETITOR_EXPERT.label}...")
    data = await perform_competitor_analysis(
        state.credentials,
        {"url": state.url, "live_text": primary_scrape.live_text,
         "screenshots": [primary_scrape.screenshot.get("data")]},
        {"url": state.competitor_url, "live_text": competitor_scrape.live_text,
         "screenshots": [competitor_scrape.screenshot.get("data")]},
        state.mime_type,
        call=deps.call_api,
    )
    state.results[COMPETITOR_EXPERT.key] = data
    await state.log("✓ Competitor Analysis complete.", {COMPETITOR_EXPERT.key: data})


# ── Finalization ─────────────────────────────────────────────────

async def _write_terminal(job_id: str, status: str, **kwargs) -> bool:
    """Terminal status write, retried so a transient DB error doesn't strand the job."""
    for attempt in range(TERMINAL_WRITE_ATTEMPTS):
        try:
            return await job_store.update_status(job_id, status, **kwargs)
        except Exception as db_err:
            logger.error(
                f"Failed to mark job {job_id} as {status} "
                f"(attempt {attempt + 1}/{TERMINAL_WRITE_ATTEMPTS}): {db_err}"
            )
            if attempt < TERMINAL_WRITE_ATTEMPTS - 1:
                await asyncio.sleep(1)
            else:
                raise
    return False


async def _finalize(state: _RunState) -> None:
    deps = state.deps
    await state.log("Finalizing report...")
    state.screenshots = await upload_screenshots(
        state.job_id, state.screenshots, state.mime_type, deps.storage
    )

    report: dict = {
        "url": state.url,
        "screenshots": state.screenshots,
        "screenshotMimeType": state.mime_type,
        **state.results,
    }
    if state.competitor_url:
        report["competitorUrl"] = state.competitor_url
    if state.expert_errors:
        report["expertErrors"] = dict(state.expert_errors)

    try:
        report["reportArtifactUrl"] = await deps.storage.save_report_artifact(state.job_id, report)
    except Exception as e:
        logger.warning(f"[Job {state.job_id}] Report artifact upload failed: {e}")

    result_url = f"/report/{state.job_id}"
    report["resultUrl"] = result_url

    final_report = await state.log(FINAL_LOG_MESSAGE, report)
    await _write_terminal(
        state.job_id, "completed", report_data=final_report, result_url=result_url
    )


# ── Entry point ──────────────────────────────────────────────────

async def process_audit_job(
    job_id: str,
    *,
    browser_endpoint: Optional[str] = None,
    release_resource: Optional[Callable[[], Awaitable[None]]] = None,
    deps: Optional[PipelineDeps] = None,
) -> None:
    """Run one audit job end to end. Never raises; failures end in status 'failed'.

    ``release_resource`` hands the browser slot back; it is called as soon as
    scraping is done, and again (no-op) when the job ends.
    """
    deps = deps or PipelineDeps()
    released = False

    async def release_browser() -> None:
        nonlocal released
        if release_resource is not None and not released:
            released = True
            await release_resource()

    claimed = False
    try:
        claimed = await job_store.update_status(job_id, "processing")
        if not claimed:
            logger.warning(f"Job {job_id} could not be claimed; skipping")
            return
        logger.info(f"[Job {job_id}] Started")

        job = await job_store.get_job(job_id)
        input_data = job.input_data or {}
        inputs = input_data.get("inputs") or []
        if not inputs:
            raise ValueError("No inputs found in job data.")

        credentials = deps.credentials if deps.credentials is not None else settings.gemini_credentials
        credentials = [c for c in credentials if c]
        if not credentials:
            raise MissingCredentialsError("Missing GEMINI_API_KEY in settings")

        state = _RunState(job_id, deps, credentials, release_browser)
        if input_data.get("auditMode") == "competitor":
            await _run_competitor(state, inputs, browser_endpoint)
        else:
            await _run_standard(state, inputs, browser_endpoint)
        await _finalize(state)
        logger.info(f"[Job {job_id}] Completed")

    except Exception as e:
        logger.error(f"Job {job_id} failed: {e}")
        logger.error(traceback.format_exc())
        if claimed:
            try:
                await _write_terminal(
                    job_id, "failed", error_message=safe_error_message(e)[:ERROR_MESSAGE_LIMIT]
                )
            except Exception:
                logger.error(f"Giving up on marking job {job_id} as failed; stale sweep will recover it")
    finally:
        await release_browser()
