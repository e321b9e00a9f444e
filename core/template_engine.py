# core/template_engine.py
"""
HTML body rendering for embedded-image report emails

The document is self-contained: no links, no iframes and no remote
resources. The only reference it holds is the cid: URI of the inline
image carried in the same multipart/related part.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import premailer
from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape
from jinja2.exceptions import TemplateError
from markupsafe import Markup, escape

logger = logging.getLogger(__name__)

REPORT_TEMPLATE = 'report.html'

REPORT_HTML = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{{ subject }}</title>
    <style>
        body { font-family: Arial, sans-serif; margin: 20px; color: #222; }
        .content { margin-bottom: 20px; }
        .report-image { max-width: 100%; height: auto; border: 1px solid #ddd; }
    </style>
</head>
<body>
    <div class="content">
        <p>{{ body | nl2br }}</p>
    </div>
    <div class="report">
        <img src="cid:{{ content_id }}" alt="{{ alt_text }}" class="report-image" />
    </div>
</body>
</html>
"""

PLAIN_TEXT_FALLBACK = (
    "{body}\n\n"
    "This email contains an embedded report image. "
    "Please view it in an HTML-capable email client.\n"
)


def nl2br(value: Optional[str]) -> Markup:
    """Escape text and turn its line breaks into <br> tags"""
    text = (value or '').replace('\r\n', '\n').replace('\r', '\n')
    return escape(text).replace('\n', Markup('<br>\n'))


@dataclass
class RenderedBody:
    html: str
    text: str
    inline_css_applied: bool


class ReportTemplateEngine:
    """Jinja2 environment holding the report email template"""

    def __init__(self, enable_css_inlining: bool = True):
        self.enable_css_inlining = enable_css_inlining
        self.env = Environment(
            loader=DictLoader({REPORT_TEMPLATE: REPORT_HTML}),
            autoescape=select_autoescape(['html', 'xml']),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters['nl2br'] = nl2br

    def render_report(self, subject: str, body: str, content_id: str,
                      alt_text: str = 'Grafana Report') -> RenderedBody:
        """
        Render the HTML body and its plain-text fallback

        Args:
            subject: Used as the document title
            body: Plain-text body written by the job owner
            content_id: Bare content id of the inline image (no angle brackets)
            alt_text: Alternative text for the image

        Returns:
            RenderedBody with the (CSS-inlined) HTML and the fallback text
        """
        try:
            html = self.env.get_template(REPORT_TEMPLATE).render(
                subject=subject, body=body, content_id=content_id, alt_text=alt_text)
        except TemplateError as e:
            logger.error(f"Report template rendering failed: {e}")
            raise

        inlined = False
        if self.enable_css_inlining:
            html, inlined = self._inline_css(html)

        return RenderedBody(html=html, text=PLAIN_TEXT_FALLBACK.format(body=body or ''),
                            inline_css_applied=inlined)

    @staticmethod
    def _inline_css(html_content: str):
        """Inline the <style> rules so clients that drop <head> still get them"""
        try:
            p = premailer.Premailer(
                html_content,
                remove_classes=False,
                keep_style_tags=True,
                include_star_selectors=True,
                strip_important=False,
                external_styles=None,
                allow_network=False,
            )
            return p.transform(), True
        except Exception as e:
            logger.warning(f"CSS inlining failed: {e}")
            return html_content, False


template_engine = ReportTemplateEngine()
