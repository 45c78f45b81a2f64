# core/proxy/__init__.py
"""
Proxy modules package.

Fetch -> classify -> rewrite pipeline behind the /api/* endpoints.
"""

from core.proxy.content_rewriter import ContentRewriter, transform_html
from core.proxy.errors import AppError, ContentError, InvalidUrlError, NetworkError, classify_error
from core.proxy.fetcher import ContentFetcher, FetchResult
from core.proxy.settings import ProxySettings
from core.proxy.url_codec import DecodeError, decode_url, encode_url, extract_domain, is_valid_url

__all__ = [
    'AppError',
    'ContentError',
    'ContentFetcher',
    'ContentRewriter',
    'DecodeError',
    'FetchResult',
    'InvalidUrlError',
    'NetworkError',
    'ProxySettings',
    'classify_error',
    'decode_url',
    'encode_url',
    'extract_domain',
    'is_valid_url',
    'transform_html',
]
