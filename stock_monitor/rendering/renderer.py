"""Product page rendering using Playwright."""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import structlog
from playwright.async_api import Browser, Error as PlaywrightError, Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import MonitoringConfig
from ..errors import RenderError
from ..models import Snapshot

logger = structlog.get_logger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

PINCODE_INPUT_SELECTORS = (
    'input[placeholder*="pincode"]',
    'input[placeholder*="pin"]',
    'input[name*="pincode"]',
    'input[name*="pin"]',
    'input[id*="pincode"]',
    'input[id*="pin"]',
    'input[type="search"]',
    'input[type="text"]',
    'input[type="number"]',
)

# Clicks the first control that opens a location/pincode dialog.
_OPEN_LOCATION_DIALOG_JS = """
() => {
  const els = Array.from(document.querySelectorAll('button, [role="button"], a'));
  const match = els.find((el) => {
    const text = (el.textContent || '').toLowerCase();
    const aria = (el.getAttribute('aria-label') || '').toLowerCase();
    const target = el.getAttribute('data-target') || el.getAttribute('data-bs-target') || '';
    return text.includes('change pincode') || text.includes('select pincode') ||
      text.includes('set pincode') || text.includes('deliver to') ||
      text.includes('change location') || aria.includes('pincode') || target.includes('location');
  });
  if (!match) return false;
  match.click();
  return true;
}
"""

_CONFIRM_LOCATION_JS = """
() => {
  const words = ['apply', 'submit', 'confirm', 'deliver', 'set', 'continue'];
  const els = Array.from(document.querySelectorAll('button, [role="button"], input[type="submit"]'));
  const match = els.find((el) => {
    if (el.offsetParent === null) return false;
    const text = (el.textContent || '').toLowerCase();
    const aria = (el.getAttribute('aria-label') || '').toLowerCase();
    return words.some((w) => text.includes(w)) || aria.includes('apply') || aria.includes('submit');
  });
  if (!match) return false;
  match.click();
  return true;
}
"""

_DISMISS_MODALS_JS = """
() => {
  const els = Array.from(document.querySelectorAll(
    'button, [role="button"], .close, [aria-label*="close" i], [aria-label*="dismiss" i]'
  ));
  const targets = els.filter((el) => {
    if (el.offsetParent === null) return false;
    const text = (el.textContent || '').trim().toLowerCase();
    const aria = (el.getAttribute('aria-label') || '').toLowerCase();
    return text === 'close' || text === 'dismiss' || text === '×' ||
      aria.includes('close') || aria.includes('dismiss');
  }).slice(0, 3);
  targets.forEach((el) => { try { el.click(); } catch (e) {} });
  return targets.length;
}
"""

_EXTRACT_SNAPSHOT_JS = """
(snippetChars) => {
  const normalize = (t) => (t || '').replace(/\\s+/g, ' ').trim();
  const lower = (t) => normalize(t).toLowerCase();
  const isVisible = (el) => {
    if (!el) return false;
    const style = window.getComputedStyle(el);
    return !!style && style.display !== 'none' && style.visibility !== 'hidden' &&
      parseFloat(style.opacity || '1') > 0 && el.offsetParent !== null;
  };
  const sectionSelector = '.product-detail, .product-details, .product-info, .product-content, ' +
    '.product-right, .product_page, .product-layout, .product-summary';

  let control = document.querySelector('.add-to-cart');
  if (!control) {
    control = Array.from(document.querySelectorAll('button, a'))
      .find((el) => lower(el.textContent).includes('add to cart')) || null;
  }

  let section = control ? control.closest(sectionSelector + ', form') : null;
  if (!section) section = document.querySelector(sectionSelector);
  if (!section) section = document.querySelector('main') || document.body;

  const notifyButtons = Array.from(section.querySelectorAll('button, a'))
    .filter((el) => isVisible(el) && lower(el.textContent).includes('notify me'));
  const soldOutBadges = Array.from(section.querySelectorAll('[class*="sold"], [class*="out"], [id*="sold"], [id*="out"]'))
    .filter((el) => {
      const t = lower(el.textContent);
      return isVisible(el) && (t.includes('sold out') || t.includes('out of stock') || t.includes('currently unavailable'));
    });

  return {
    primary_control: control ? {
      text: normalize(control.textContent),
      visible: isVisible(control),
      disabled: Boolean(control.disabled) || lower(control.className).includes('disabled') ||
        control.getAttribute('aria-disabled') === 'true',
    } : null,
    section_text: lower(section.innerText).slice(0, snippetChars),
    body_text: lower(document.body ? document.body.innerText : '').slice(0, snippetChars),
    notify_buttons_count: notifyButtons.length,
    sold_out_badges_count: soldOutBadges.length,
    page_title: document.title || '',
    final_url: window.location.href,
  };
}
"""


class Renderer(Protocol):
    async def render(self, url: str, location_filter: str) -> Snapshot: ...


class PlaywrightRenderer:
    """Renders product pages in a shared headless Chromium, one context per render."""

    def __init__(self, config: MonitoringConfig):
        self.config = config
        self._playwright = None
        self.browser: Browser | None = None
        self._start_lock = asyncio.Lock()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> Browser:
        async with self._start_lock:
            if self.browser is not None and self.browser.is_connected():
                return self.browser
            logger.info("Starting browser", headless=self.config.browser_headless)
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            self.browser = await self._playwright.chromium.launch(
                headless=self.config.browser_headless,
                args=["--no-sandbox", "--disable-setuid-sandbox"],
            )
            return self.browser

    async def stop(self) -> None:
        logger.info("Stopping browser")
        if self.browser is not None:
            try:
                await self.browser.close()
            except PlaywrightError as e:
                logger.warning("Error closing browser", error=str(e))
            self.browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    @property
    def _nav_timeout_ms(self) -> float:
        return self.config.navigation_timeout_seconds * 1000

    async def render(self, url: str, location_filter: str) -> Snapshot:
        try:
            browser = await self.start()
        except PlaywrightError as e:
            raise RenderError(f"browser_launch_error: {e}", url=url) from e

        context = None
        try:
            context = await browser.new_context(
                viewport={"width": 1280, "height": 900},
                user_agent=USER_AGENT,
            )
            page = await context.new_page()
            await page.goto(url, wait_until="domcontentloaded", timeout=self._nav_timeout_ms)
            await asyncio.sleep(self.config.settle_delay_seconds)

            await self._apply_location_filter(page, location_filter)

            if page.url != url:
                await page.goto(url, wait_until="domcontentloaded", timeout=self._nav_timeout_ms)
                await asyncio.sleep(self.config.settle_delay_seconds)

            await self._dismiss_modals(page)

            data: dict[str, Any] = await page.evaluate(_EXTRACT_SNAPSHOT_JS, self.config.text_snippet_chars)
            snapshot = Snapshot.from_dict(data)
            logger.debug("Rendered page", url=url, title=snapshot.page_title)
            return snapshot
        except PlaywrightTimeoutError as e:
            raise RenderError(f"render_timeout: {e}", url=url, timed_out=True) from e
        except PlaywrightError as e:
            raise RenderError(f"render_error: {e}", url=url) from e
        finally:
            if context is not None:
                try:
                    await context.close()
                except PlaywrightError:
                    logger.debug("Context already closed", url=url)

    async def _apply_location_filter(self, page: Page, location_filter: str) -> bool:
        """Best-effort pincode entry; returns whether the pincode shows up on the page afterwards."""
        if not location_filter:
            return False

        try:
            body_text = (await page.inner_text("body")).lower()
            if "pincode" not in body_text:
                return False

            logger.info("Setting delivery pincode", pincode=location_filter)
            if await page.evaluate(_OPEN_LOCATION_DIALOG_JS):
                await asyncio.sleep(0.8)

            input_handle = None
            for selector in PINCODE_INPUT_SELECTORS:
                for element in await page.query_selector_all(selector):
                    if not await element.is_visible():
                        continue
                    attrs = " ".join(
                        (await element.get_attribute(name) or "").lower()
                        for name in ("placeholder", "name", "id")
                    )
                    if "pin" in attrs or "pin" in selector:
                        input_handle = element
                        break
                if input_handle is not None:
                    break

            if input_handle is None:
                logger.info("Could not find pincode input field")
                return False

            await input_handle.click(click_count=3)
            await input_handle.fill("")
            await input_handle.press_sequentially(location_filter, delay=120)
            await asyncio.sleep(0.6)

            if not await self._pick_suggestion(page, location_filter):
                await input_handle.press("Enter")
                await asyncio.sleep(1.0)

            if await page.evaluate(_CONFIRM_LOCATION_JS):
                await asyncio.sleep(1.5)

            try:
                await page.wait_for_load_state("domcontentloaded", timeout=4000)
            except PlaywrightTimeoutError:
                pass

            applied = location_filter in await page.inner_text("body")
            if applied:
                logger.info("Delivery pincode applied", pincode=location_filter)
            else:
                logger.info("Could not confirm delivery pincode on the page", pincode=location_filter)
            return applied
        except PlaywrightError as e:
            logger.warning("Could not set pincode automatically", pincode=location_filter, error=str(e))
            return False

    async def _pick_suggestion(self, page: Page, location_filter: str) -> bool:
        # Google Places style autocomplete.
        try:
            await page.wait_for_selector(".pac-item", timeout=4000)
        except PlaywrightTimeoutError:
            return False

        suggestions = await page.query_selector_all(".pac-item")
        if not suggestions:
            return False
        chosen = suggestions[0]
        for suggestion in suggestions:
            if location_filter in (await suggestion.text_content() or "").lower():
                chosen = suggestion
                break
        await chosen.click()
        await asyncio.sleep(1.0)
        return True

    async def _dismiss_modals(self, page: Page) -> None:
        try:
            closed = await page.evaluate(_DISMISS_MODALS_JS)
        except PlaywrightError as e:
            logger.debug("Modal dismissal failed", error=str(e))
            return
        if closed:
            await asyncio.sleep(0.5)
