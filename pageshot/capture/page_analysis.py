"""Structural summary of a page."""

import logging
from typing import Any, Dict

from playwright.async_api import Page

logger = logging.getLogger(__name__)


ANALYSIS_SCRIPT = """
() => {
    const selectorOf = el => {
        const classes = typeof el.className === 'string' && el.className.trim()
            ? '.' + el.className.trim().split(/\\s+/).join('.') : '';
        return el.tagName.toLowerCase() + (el.id ? `#${el.id}` : '') + classes;
    };
    const links = Array.from(document.querySelectorAll('a[href]')).map(a => ({
        text: a.textContent.trim(), href: a.href, selector: selectorOf(a)
    }));
    const buttons = Array.from(document.querySelectorAll(
        'button, input[type="button"], input[type="submit"], [role="button"]'
    )).map(btn => ({
        text: btn.textContent.trim() || btn.value || btn.getAttribute('aria-label'),
        selector: selectorOf(btn),
        type: btn.type || 'button'
    }));
    const forms = Array.from(document.querySelectorAll('form')).map(form => ({
        action: form.action,
        method: form.method,
        inputs: Array.from(form.querySelectorAll('input, select, textarea')).map(input => ({
            name: input.name, type: input.type, placeholder: input.placeholder, required: input.required
        }))
    }));
    const navigation = Array.from(document.querySelectorAll(
        'nav, [role="navigation"], .nav, .navbar, .menu'
    )).map(nav => ({
        links: Array.from(nav.querySelectorAll('a')).map(a => ({ text: a.textContent.trim(), href: a.href }))
    }));
    return {
        url: window.location.href,
        title: document.title,
        links: links.slice(0, 20),
        buttons: buttons.slice(0, 10),
        forms: forms.slice(0, 5),
        navigation: navigation.slice(0, 3),
        hasModal: !!document.querySelector('[role="dialog"], .modal, .popup'),
        scrollHeight: Math.max(document.body ? document.body.scrollHeight : 0,
                               document.documentElement.scrollHeight),
        viewportHeight: window.innerHeight
    };
}
"""


async def analyze_page(page: Page) -> Dict[str, Any]:
    """Return links, buttons, forms and navigation blocks of the page."""
    analysis = await page.evaluate(ANALYSIS_SCRIPT) or {}
    logger.info(
        f"Page analysis: {len(analysis.get('links', []))} links, "
        f"{len(analysis.get('buttons', []))} buttons, {len(analysis.get('forms', []))} forms"
    )
    return analysis
