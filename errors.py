"""
统一的错误类型

适配器内部抛出这些异常，在适配器边界转换成空结果 / 错误哨兵，
只有配置层面的问题（代理白名单）才会直接暴露给调用方。
"""


class MusicApiError(Exception):
    kind = "upstream"

    def __init__(self, message="", source=None):
        super().__init__(message)
        self.source = source

    def __str__(self):
        message = super().__str__()
        if self.source:
            return f"[{self.source}] {message}"
        return message


class UpstreamUnavailable(MusicApiError):
    """网络异常或上游返回非 2xx"""
    kind = "upstream"


class EmptyPayload(MusicApiError):
    """响应能解析，但缺少需要的字段"""
    kind = "empty"


class PlaybackRestricted(MusicApiError):
    """歌曲存在但受版权 / 付费限制，重试没有意义"""
    kind = "copyright"


class ProxyRejected(MusicApiError):
    """目标域名不在代理白名单"""
    kind = "forbidden"


class UpstreamTimeout(MusicApiError):
    kind = "timeout"


class LyricParseTimeout(MusicApiError):
    kind = "timeout"
