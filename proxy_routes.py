"""
同源代理接口

/proxy/api       通用 API 代理（JSON 或二进制透传）
/proxy/audio     音频流代理，转发 Range 支持拖动进度
/proxy/<平台>     平台专用代理，注入平台要求的 Referer / Origin
"""
import ipaddress
import logging
from urllib.parse import urljoin, urlsplit

import requests
from flask import Blueprint, Response, jsonify, request, stream_with_context

import config
from errors import ProxyRejected
from proxy_router import host_matches

logger = logging.getLogger(__name__)

proxy_bp = Blueprint("proxy_bp", __name__, url_prefix="/proxy")

# 透传给客户端的响应头
PASSTHROUGH_HEADERS = ("content-type", "content-length", "content-range", "accept-ranges", "cache-control")
REDIRECT_CODES = (301, 302, 303, 307, 308)

# 交给 flask_cors 的跨域配置，在 create_app 里按 /proxy/* 注册
CORS_OPTIONS = {
    "methods": ["GET", "HEAD", "OPTIONS"],
    "allow_headers": ["Content-Type", "Accept", "Range"],
    "expose_headers": ["Content-Length", "Content-Range", "Content-Type", "Accept-Ranges"],
    "max_age": 86400,
}


def _json_error(status, error, message=None):
    body = {"error": error}
    if message is not None:
        body["message"] = message
    resp = jsonify(body)
    resp.status_code = status
    return resp


def validate_target(url, allowed_domains):
    """
    检查目标地址：只允许 http(s)、不允许内网地址、域名必须在白名单里。
    不通过时抛 ProxyRejected
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        raise ProxyRejected("URL 格式不正确", source="proxy")
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ProxyRejected("只允许 http / https 地址", source="proxy")

    hostname = parts.hostname
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        ip = None
    if ip is not None and (ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved):
        raise ProxyRejected(f"禁止访问内网地址 {hostname}", source="proxy")
    if hostname.lower() == "localhost":
        raise ProxyRejected("禁止访问内网地址 localhost", source="proxy")

    if not host_matches(hostname, allowed_domains):
        raise ProxyRejected(f"域名不在白名单: {hostname}", source="proxy")
    return parts


def open_upstream(method, target, headers, allowed_domains):
    """
    发起上游请求并手动跟随重定向，每一跳的 Location 都重新过一遍 validate_target。
    跳转到不允许的地址抛 ProxyRejected，超过 PROXY_MAX_REDIRECTS 次抛 requests.TooManyRedirects
    """
    for _ in range(config.PROXY_MAX_REDIRECTS + 1):
        remote = requests.request(method, target, headers=headers, stream=True,
                                  timeout=config.REQUEST_TIMEOUT, allow_redirects=False)
        location = remote.headers.get("location")
        if remote.status_code not in REDIRECT_CODES or not location:
            return remote
        remote.close()
        target = urljoin(target, location)
        validate_target(target, allowed_domains)
        if remote.status_code == 303 and method != "HEAD":
            method = "GET"
        logger.debug("↪️ 代理跟随重定向 -> %s", target)
    raise requests.TooManyRedirects(f"重定向超过 {config.PROXY_MAX_REDIRECTS} 次")


def _forward(allowed_domains, referer=None, audio=False):
    if request.method == "OPTIONS":
        return Response(status=204)

    target = request.args.get("url", "").strip()
    if not target:
        return _json_error(400, "Missing url parameter")

    try:
        parts = validate_target(target, allowed_domains)
    except ProxyRejected as e:
        logger.warning("🚫 代理拒绝: %s", e)
        return _json_error(403, "Domain not allowed")

    headers = {
        "User-Agent": config.USER_AGENT,
        "Referer": referer or f"{parts.scheme}://{parts.netloc}/",
    }
    if referer:
        headers["Origin"] = referer.rstrip("/")
    range_header = request.headers.get("Range")
    if range_header:
        headers["Range"] = range_header

    try:
        remote = open_upstream(request.method, target, headers, allowed_domains)
    except ProxyRejected as e:
        logger.warning("🚫 代理拒绝重定向: %s", e)
        return _json_error(403, "Domain not allowed")
    except requests.RequestException as e:
        logger.error("❌ 代理请求失败 %s: %s", target, e)
        return _json_error(500, "Proxy request failed", str(e))

    resp_headers = {}
    for name in PASSTHROUGH_HEADERS:
        value = remote.headers.get(name)
        if value:
            resp_headers[name] = value
    if audio:
        # 确保有正确的 Content-Type，并声明支持 Range
        resp_headers.setdefault("content-type", "audio/mpeg")
        resp_headers.setdefault("accept-ranges", "bytes")

    def generate():
        try:
            for chunk in remote.iter_content(chunk_size=config.PROXY_CHUNK_SIZE):
                if chunk:
                    yield chunk
        finally:
            remote.close()

    if request.method == "HEAD":
        remote.close()
        resp = Response(status=remote.status_code, headers=resp_headers)
    else:
        resp = Response(stream_with_context(generate()), status=remote.status_code, headers=resp_headers)
    return resp


@proxy_bp.route("/api", methods=["GET", "HEAD", "OPTIONS"])
def api_proxy():
    return _forward(config.PROXY_DOMAINS)


@proxy_bp.route("/audio", methods=["GET", "HEAD", "OPTIONS"])
def audio_proxy():
    return _forward(config.AUDIO_PROXY_DOMAINS, audio=True)


@proxy_bp.route("/<platform>", methods=["GET", "HEAD", "OPTIONS"])
def platform_proxy(platform):
    if platform not in config.PLATFORM_PROXIES:
        return _json_error(404, f"Unknown platform: {platform}")
    return _forward(config.PLATFORM_DOMAINS.get(platform, ()),
                    referer=config.PLATFORM_REFERERS.get(platform), audio=True)
