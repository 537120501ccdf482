class ServiceError(Exception):
    pass


class InvalidURLError(ServiceError):
    pass


class UnsupportedPlatformError(ServiceError):
    pass


class PrivateOrUnavailableError(ServiceError):
    pass


class RateLimitedError(ServiceError):
    pass


class FetchFailedError(ServiceError):
    pass


class ContentExtractionError(ServiceError):
    pass


class ProviderConfigurationError(ServiceError):
    pass


class MalformedOutputError(ServiceError):
    pass


class NetworkTimeoutError(ServiceError):
    def __init__(self, url: str, timeout_seconds: float):
        super().__init__(f"Network timeout after {timeout_seconds}s: {url}")
        self.url = url
        self.timeout_seconds = timeout_seconds
