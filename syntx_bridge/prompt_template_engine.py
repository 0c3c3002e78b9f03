from __future__ import annotations

from pathlib import Path

from jinja2 import BaseLoader, Environment, TemplateError

from .logger_factory import get_logger
from .utils.correlation import embed_marker, make_job_marker
from .utils.logfmt import fmt

DEFAULT_TEMPLATE = "{{ prompt }}\n\n{{ marker }}"


class PromptTemplateEngine:
    """Renders the outbound request text around the user's prompt.

    The template may come inline (``outbound.template``) or from a file
    (``outbound.template_path``, hot-reloaded on change). Variables: prompt,
    job_id, marker. If a template drops ``{{ marker }}`` the marker is
    appended anyway; without it the reply could only ever match by fallback.
    """

    def __init__(self, template: str | None = None, template_path: str | None = None):
        self._inline = template or DEFAULT_TEMPLATE
        self._path = template_path or ""
        self._file_template = ""
        self._mtime_ns = 0
        self.env = Environment(loader=BaseLoader(), keep_trailing_newline=False)
        self._log = get_logger("PromptTemplate")
        self._maybe_reload()

    def _maybe_reload(self) -> None:
        p = Path(self._path) if self._path else None
        if p is None:
            return
        try:
            m = p.stat().st_mtime_ns
        except OSError:
            if self._file_template:
                self._log.warning(f"template-missing {fmt('path', self._path)} using=inline")
            self._file_template = ""
            self._mtime_ns = 0
            return
        if m != self._mtime_ns:
            self._file_template = p.read_text(encoding="utf-8")
            self._mtime_ns = m

    @property
    def source(self) -> str:
        self._maybe_reload()
        return self._file_template or self._inline

    def render(self, prompt: str, job_id: str) -> str:
        marker = make_job_marker(job_id)
        try:
            text = self.env.from_string(self.source).render(prompt=prompt, job_id=job_id, marker=marker)
        except TemplateError as e:
            self._log.error(f"template-render-error {fmt('job', job_id)} {fmt('err', e)} using=default")
            text = self.env.from_string(DEFAULT_TEMPLATE).render(prompt=prompt, job_id=job_id, marker=marker)
        return embed_marker(text.strip(), job_id)
