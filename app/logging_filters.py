# --- Global log sanitizer: tokens, HTML error pages, oversized payloads ----------
import logging, re

MAX_MESSAGE_CHARS = 2000

_TOKEN_RE    = re.compile(r'\b(shp(?:at|ca|pa|ss)_)[0-9a-fA-F]{8,}')
_HEADER_RE   = re.compile(r'(?i)(X-Shopify-Access-Token["\']?\s*[:=]\s*["\']?)[^"\'\s,}]+')
_HTML_SIG_RE = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE    = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')

def redact(s: str) -> str:
    s = _TOKEN_RE.sub(r'\1****', s)
    return _HEADER_RE.sub(r'\1****', s)

def _summarize_html(s: str, limit: int = 200) -> str:
    m = _TITLE_RE.search(s)
    preview = _TAG_RE.sub(' ', m.group(1) if m else s)
    preview = re.sub(r'\s+', ' ', preview).strip()[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"

def sanitize(msg: str, limit: int = MAX_MESSAGE_CHARS) -> str:
    msg = redact(msg)
    if len(msg) > 200 and _HTML_SIG_RE.search(msg):
        return _summarize_html(msg)
    if len(msg) > limit:
        return f"{msg[:limit]}… [{len(msg) - limit} chars trimmed]"
    return msg

class PayloadTrimFilter(logging.Filter):
    """Redact access tokens and shorten HTML error pages and large GraphQL payloads."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        if isinstance(msg, str):
            clean = sanitize(msg)
            if clean != msg:
                record.msg = clean
                record.args = ()
        return True

def install(names=("", "uvicorn", "uvicorn.error")) -> None:
    for _name in names:
        lg = logging.getLogger(_name)
        if not any(isinstance(f, PayloadTrimFilter) for f in lg.filters):
            lg.addFilter(PayloadTrimFilter())
# --------------------------------------------------------------------------------
