"""
跨域代理路由

判断一个上游 URL 是否需要走同源代理，以及走哪一种代理：
平台专用代理 > 音频流代理 > 通用 API 代理。
只做字符串改写，不发起任何网络请求。
"""
import logging
import re
from urllib.parse import quote, urlsplit

import config

logger = logging.getLogger(__name__)


def host_matches(hostname, domains):
    """hostname 等于某个域名或是它的子域名"""
    hostname = (hostname or "").lower().rstrip(".")
    if not hostname:
        return False
    for domain in domains:
        domain = domain.lower()
        if hostname == domain or hostname.endswith("." + domain):
            return True
    return False


class ProxyRouter:

    def __init__(self, enabled=None, auto_https=None, proxy_domains=None,
                 platform_proxies=None, api_proxy=None, audio_proxy=None,
                 audio_extensions=None, audio_host_patterns=None, outer_link_patterns=None):
        self.enabled = config.USE_PROXY if enabled is None else enabled
        self.auto_https = config.AUTO_HTTPS if auto_https is None else auto_https
        self.proxy_domains = tuple(proxy_domains if proxy_domains is not None else config.PROXY_DOMAINS)
        self.platform_proxies = dict(platform_proxies if platform_proxies is not None else config.PLATFORM_PROXIES)
        self.api_proxy = api_proxy or config.API_PROXY_PATH
        self.audio_proxy = audio_proxy or config.AUDIO_PROXY_PATH
        self.audio_extensions = tuple(audio_extensions or config.AUDIO_EXTENSIONS)
        self._audio_hosts = [re.compile(p, re.IGNORECASE)
                             for p in (audio_host_patterns or config.AUDIO_HOST_PATTERNS)]
        self._outer_links = [re.compile(p, re.IGNORECASE)
                             for p in (outer_link_patterns or config.OUTER_LINK_PATTERNS)]

    @staticmethod
    def _split(url):
        """解析失败返回 None（放行原 URL，不阻塞界面）"""
        if not url or not isinstance(url, str):
            return None
        try:
            parts = urlsplit(url.strip())
        except ValueError:
            logger.debug("⚠️ URL 解析失败: %r", url)
            return None
        if parts.scheme not in ("http", "https") or not parts.hostname:
            return None
        return parts

    def needs_proxy(self, url, source_hint=None):
        if not self.enabled:
            return False
        parts = self._split(url)
        if parts is None:
            return False
        if source_hint and source_hint in self.platform_proxies:
            return True
        return host_matches(parts.hostname, self.proxy_domains)

    def classify_audio(self, url):
        parts = self._split(url)
        if parts is None:
            return False
        path = parts.path.lower()
        if path.endswith(self.audio_extensions):
            return True
        hostname = parts.hostname.lower()
        if any(p.search(hostname) for p in self._audio_hosts):
            return True
        full = f"{hostname}{parts.path}"
        return any(p.search(full) for p in self._outer_links)

    def upgrade_https(self, url):
        if self.auto_https and isinstance(url, str) and url.startswith("http://"):
            return "https://" + url[len("http://"):]
        return url

    def resolve(self, url, source_hint=None):
        if not self.needs_proxy(url, source_hint):
            if self._split(url) is None:
                return url
            return self.upgrade_https(url)

        target = url.strip()
        if source_hint and source_hint in self.platform_proxies:
            proxy = self.platform_proxies[source_hint]
        elif self.classify_audio(target):
            proxy = self.audio_proxy
        else:
            proxy = self.api_proxy
        return f"{proxy}?url={quote(target, safe='')}"

    def status(self):
        return {
            "enabled": self.enabled,
            "autoHttps": self.auto_https,
            "proxyDomains": list(self.proxy_domains),
            "platformProxies": dict(self.platform_proxies),
        }
