# core/proxy/content_rewriter.py
"""Модуль для перезаписи URL в HTML/CSS контенте"""

import html
import json
import logging
import re
from string import Template
from typing import List, Match, Optional, Tuple
from urllib.parse import quote, urljoin, urlsplit

logger = logging.getLogger(__name__)

RESOURCE_PATH = '/api/resource'

# Ссылки, которые нельзя (и не нужно) проксировать
_UNPROXYABLE_PREFIXES = ('data:', 'javascript:', 'mailto:', 'tel:', 'blob:', '#')

# encodeURIComponent, но кавычки и скобки тоже кодируются:
# результат безопасен в любых кавычках и в url() без кавычек
_RESOURCE_URL_SAFE = '!~*'

_INTERCEPT_SCRIPT = Template("""<script>
(function() {
    var PROXY_BASE = $proxy_base;
    var BASE_URL = $base_url;
    var RESOURCE_PREFIX = PROXY_BASE + $resource_path + '?url=';
    var SKIP = /^(data:|javascript:|blob:|mailto:|tel:|about:|#)/i;

    function proxyUrl(url) {
        if (typeof url !== 'string' || url === '' || SKIP.test(url) || url.indexOf(PROXY_BASE) !== -1) {
            return url;
        }
        try {
            var resolved = new URL(url, BASE_URL);
            if (resolved.protocol !== 'http:' && resolved.protocol !== 'https:') {
                return url;
            }
            return RESOURCE_PREFIX + encodeURIComponent(resolved.href);
        } catch (e) {
            return url;
        }
    }

    var originalFetch = window.fetch;
    if (originalFetch) {
        window.fetch = function(resource, init) {
            if (typeof resource === 'string') {
                resource = proxyUrl(resource);
            } else if (typeof URL !== 'undefined' && resource instanceof URL) {
                resource = proxyUrl(resource.href);
            } else if (typeof Request !== 'undefined' && resource instanceof Request) {
                var rewritten = proxyUrl(resource.url);
                if (rewritten !== resource.url) {
                    resource = new Request(rewritten, resource);
                }
            }
            return originalFetch.call(this, resource, init);
        };
    }

    if (window.XMLHttpRequest) {
        var originalOpen = XMLHttpRequest.prototype.open;
        XMLHttpRequest.prototype.open = function(method, url) {
            var args = Array.prototype.slice.call(arguments);
            if (args.length > 1) {
                args[1] = proxyUrl(String(url));
            }
            return originalOpen.apply(this, args);
        };
    }

    function patchProperty(ctor, prop) {
        if (!ctor || !ctor.prototype) {
            return;
        }
        var descriptor = Object.getOwnPropertyDescriptor(ctor.prototype, prop);
        if (!descriptor || !descriptor.set || !descriptor.configurable) {
            return;
        }
        Object.defineProperty(ctor.prototype, prop, {
            configurable: true,
            enumerable: descriptor.enumerable,
            get: descriptor.get,
            set: function(value) {
                descriptor.set.call(this, proxyUrl(String(value)));
            }
        });
    }

    [
        [window.HTMLImageElement, 'src'],
        [window.HTMLScriptElement, 'src'],
        [window.HTMLLinkElement, 'href'],
        [window.HTMLAnchorElement, 'href'],
        [window.HTMLMediaElement, 'src'],
        [window.HTMLSourceElement, 'src'],
        [window.HTMLIFrameElement, 'src']
    ].forEach(function(entry) {
        patchProperty(entry[0], entry[1]);
    });

    var URL_ATTRIBUTES = {src: true, href: true, action: true};
    var originalSetAttribute = Element.prototype.setAttribute;
    Element.prototype.setAttribute = function(name, value) {
        if (typeof name === 'string' && URL_ATTRIBUTES.hasOwnProperty(name.toLowerCase())) {
            value = proxyUrl(String(value));
        }
        return originalSetAttribute.call(this, name, value);
    };
})();
</script>""")


def _attribute_pattern(attr: str) -> 're.Pattern':
    # <tag ... attr="value"> / attr='value' / attr=value
    return re.compile(
        r'(?P<prefix><(?P<tag>[a-zA-Z][\w:-]*)\b[^>]*?\s' + attr + r'\s*=\s*)'
        r'(?:"(?P<dq>[^"]*)"|\'(?P<sq>[^\']*)\'|(?P<bare>[^\s"\'=<>`]+))',
        re.IGNORECASE | re.DOTALL
    )


def _attribute_value(match: Match) -> Tuple[str, str]:
    """(кавычка для вывода, сырое значение атрибута)"""
    if match.group('dq') is not None:
        return '"', match.group('dq')
    if match.group('sq') is not None:
        return "'", match.group('sq')
    return '"', match.group('bare')


def split_srcset(value: str) -> List[Tuple[str, str]]:
    """
    Разбирает srcset на пары (url, дескриптор)

    URL кандидата - непрерывная строка без пробелов, поэтому запятые
    внутри него (data:image/png;base64,...) не разделяют кандидатов.
    """
    candidates = []
    position, length = 0, len(value)

    while position < length:
        while position < length and (value[position].isspace() or value[position] == ','):
            position += 1
        if position >= length:
            break

        end = position
        while end < length and not value[end].isspace():
            end += 1
        url = value[position:end]
        position = end

        descriptor = ''
        if url.endswith(','):
            url = url.rstrip(',')
        else:
            comma = value.find(',', position)
            if comma == -1:
                comma = length
            descriptor = value[position:comma].strip()
            position = comma + 1

        candidates.append((url, descriptor))

    return candidates


def _js_literal(value: str) -> str:
    return json.dumps(value).replace('</', '<\\/')


def build_intercept_script(base_url: str, proxy_base: str) -> str:
    """
    Генерирует runtime-скрипт, который перехватывает fetch/XHR и
    присваивания src/href, чтобы динамические ссылки тоже шли через прокси
    """
    return _INTERCEPT_SCRIPT.substitute(
        proxy_base=_js_literal(proxy_base),
        base_url=_js_literal(base_url),
        resource_path=_js_literal(RESOURCE_PATH),
    )


class ContentRewriter:
    """Класс для перезаписи URL в HTML/CSS контенте"""

    # Предкомпилированные регулярные выражения
    _URL_ATTR_PATTERNS = tuple(_attribute_pattern(attr) for attr in ('src', 'href', 'action'))
    _SRCSET_PATTERN = _attribute_pattern('srcset')
    _CSS_URL_PATTERN = re.compile(r'(?<![\w$.])url\(\s*(["\']?)([^"\')]+)\1\s*\)')
    _CSS_IMPORT_PATTERN = re.compile(r'@import\s+(["\'])([^"\']+)\1', re.IGNORECASE)
    _HEAD_PATTERN = re.compile(r'<head\b[^>]*>', re.IGNORECASE)

    def __init__(self, base_url: str, proxy_base: str):
        """
        Args:
            base_url: Итоговый URL документа (после редиректов)
            proxy_base: Внешний адрес прокси (например, https://proxy.example.org)
        """
        self.base_url = base_url
        self.proxy_base = proxy_base.rstrip('/')
        self.resource_prefix = f"{self.proxy_base}{RESOURCE_PATH}?url="

    def resolve_url(self, url: str, base_url: Optional[str] = None) -> Optional[str]:
        """
        Превращает ссылку в абсолютный URL

        Returns:
            str или None: None если ссылку проксировать нельзя
        """
        url = url.strip()
        if not url or url.lower().startswith(_UNPROXYABLE_PREFIXES):
            return None

        try:
            if url.startswith('//'):
                resolved = 'https:' + url
            else:
                resolved = urljoin(base_url or self.base_url, url)
            parsed = urlsplit(resolved)
        except ValueError:
            return None

        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return None

        return resolved

    def proxy_url(self, resolved_url: str) -> str:
        """URL ресурса через /api/resource"""
        return self.resource_prefix + quote(resolved_url, safe=_RESOURCE_URL_SAFE)

    def is_proxied(self, url: str) -> bool:
        return url.strip().startswith(self.resource_prefix)

    def _rewrite_value(self, value: str, base_url: Optional[str] = None) -> Optional[str]:
        if self.is_proxied(value):
            return None
        resolved = self.resolve_url(value, base_url)
        if resolved is None:
            return None
        return self.proxy_url(resolved)

    def rewrite_html(self, content: str) -> str:
        """
        Перезаписывает URL в HTML контенте

        Все ссылки разрешаются относительно итогового URL документа,
        он же попадает во вставленный <base href>.

        Args:
            content: HTML контент

        Returns:
            str: HTML с <base>, runtime-скриптом и ссылками через прокси
        """
        for pattern in self._URL_ATTR_PATTERNS:
            content = pattern.sub(self._replace_attribute, content)

        content = self._SRCSET_PATTERN.sub(self._replace_srcset, content)
        content = self.rewrite_css(content)

        return self._inject_head(content)

    def rewrite_css(self, content: str, base_url: Optional[str] = None) -> str:
        """
        Перезаписывает url(...) и @import "..." в CSS

        Args:
            content: CSS контент (или HTML со стилями)
            base_url: База для относительных ссылок (по умолчанию base_url документа)
        """
        # Кавычки сохраняются: url() может стоять внутри style="..."
        def replace_url(match: Match) -> str:
            proxied = self._rewrite_value(match.group(2), base_url)
            if proxied is None:
                return match.group(0)
            return f'url({match.group(1)}{proxied}{match.group(1)})'

        def replace_import(match: Match) -> str:
            proxied = self._rewrite_value(match.group(2), base_url)
            if proxied is None:
                return match.group(0)
            return f'@import {match.group(1)}{proxied}{match.group(1)}'

        content = self._CSS_URL_PATTERN.sub(replace_url, content)
        content = self._CSS_IMPORT_PATTERN.sub(replace_import, content)
        return content

    def _replace_attribute(self, match: Match) -> str:
        # Собственный <base> документа не трогаем: вставленный стоит раньше
        if match.group('tag').lower() == 'base':
            return match.group(0)

        quote_char, raw = _attribute_value(match)

        proxied = self._rewrite_value(html.unescape(raw))
        if proxied is None:
            return match.group(0)

        return f"{match.group('prefix')}{quote_char}{proxied}{quote_char}"

    def _replace_srcset(self, match: Match) -> str:
        quote_char, raw = _attribute_value(match)

        candidates = []
        for url, descriptor in split_srcset(raw):
            proxied = self._rewrite_value(html.unescape(url))
            candidates.append(' '.join(filter(None, (proxied or url, descriptor))))

        return f"{match.group('prefix')}{quote_char}{', '.join(candidates)}{quote_char}"

    def _inject_head(self, content: str) -> str:
        injection = (
            f'<base href="{html.escape(self.base_url, quote=True)}">\n'
            f'{build_intercept_script(self.base_url, self.proxy_base)}'
        )

        match = self._HEAD_PATTERN.search(content)
        if match is None:
            return f"{injection}\n{content}"

        return f"{content[:match.end()]}\n{injection}\n{content[match.end():]}"


def transform_html(content: str, base_url: str, proxy_base: str) -> str:
    """Полная перезапись HTML документа (удобная обёртка)"""
    return ContentRewriter(base_url, proxy_base).rewrite_html(content)
