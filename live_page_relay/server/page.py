"""HTML page assembly for ``GET /``.

The template is read on every request so edits show up without a restart. Its
first ``{content}`` placeholder receives either the caller-supplied content or
the default streaming client below.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

from ..core.timing_logger import timed

LOGGER = logging.getLogger(__name__)

CONTENT_PLACEHOLDER = "{content}"
INTERNAL_ERROR_PAGE = "<h1>Internal Server Error</h1>"

DEFAULT_CONTENT = r"""
  <main style="font-family: system-ui, -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; max-width: 900px; margin: 3rem auto; padding: 0 1.5rem;">
    <h1 style="margin-bottom: 0.5rem;">Generating the page</h1>
    <p id="status" style="color: #555;">Establishing a live connection…</p>
    <div id="content" aria-live="polite"></div>
  </main>
  <script>
    (() => {
      const status = document.getElementById('status');
      const target = document.getElementById('content');
      if (!status || !target) {
        return;
      }

      const protocol = window.location.protocol === 'https:' ? 'wss' : 'ws';
      const socket = new WebSocket(protocol + '://' + window.location.host + '/stream');
      let buffer = '';
      let finished = false;

      const escapeHtml = (value) => value.replace(/[&<>"']/g, (character) => ({
        '&': '&amp;',
        '<': '&lt;',
        '>': '&gt;',
        '"': '&quot;',
        "'": '&#39;',
      })[character] || character);

      socket.addEventListener('open', () => {
        status.textContent = 'Building the page…';
      });

      socket.addEventListener('message', (event) => {
        if (finished) {
          return;
        }
        let payload;
        try {
          payload = JSON.parse(event.data);
        } catch (error) {
          console.error('Unable to parse relay message', error);
          return;
        }
        if (payload.type === 'chunk' && typeof payload.data === 'string') {
          buffer += payload.data;
          target.innerHTML = buffer;
          status.textContent = 'Adding sections…';
        } else if (payload.type === 'done') {
          finished = true;
          status.textContent = 'The page is ready.';
          socket.close();
        } else if (payload.type === 'error' && typeof payload.message === 'string') {
          finished = true;
          status.textContent = 'Unable to build the page.';
          target.innerHTML = '<pre style="white-space: pre-wrap; background: #f5f5f5; padding: 1rem; border-radius: 0.5rem;">' + escapeHtml(payload.message) + '</pre>';
          socket.close();
        }
      });

      socket.addEventListener('close', () => {
        if (!buffer && !finished) {
          status.textContent = 'Connection closed before any content was received.';
        }
      });

      socket.addEventListener('error', () => {
        if (!finished) {
          status.textContent = 'A network error occurred.';
        }
      });
    })();
  </script>
"""


def _normalize_content(requested: Union[str, Sequence[str], None]) -> Optional[str]:
    if requested is None:
        return None
    if isinstance(requested, str):
        return requested or None
    joined = " ".join(requested)
    return joined or None


@timed
def load_template(path: Union[str, Path]) -> str:
    """Read the page template. Raises OSError when it cannot be read."""
    return Path(path).read_text(encoding="utf-8")


@timed
def build_page(
    template_path: Union[str, Path],
    requested_content: Union[str, Sequence[str], None] = None,
) -> tuple[str, int]:
    """Return ``(html, status_code)`` for the landing page.

    Repeated ``content`` values are joined with a space; empty content falls
    back to the streaming client. A template that cannot be read yields the
    internal error page with status 500.
    """
    try:
        template = load_template(template_path)
    except OSError as exc:
        LOGGER.error("Unable to read template at %s: %s", template_path, exc)
        return INTERNAL_ERROR_PAGE, 500

    content = _normalize_content(requested_content)
    return template.replace(CONTENT_PLACEHOLDER, content or DEFAULT_CONTENT, 1), 200
