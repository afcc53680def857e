class QRPulseError(Exception):
    """Base class for errors raised by the redirect pipeline."""


class ShortCodeNotFound(QRPulseError):
    def __init__(self, short_code: str):
        super().__init__(f"Short code '{short_code}' not found")
        self.short_code = short_code


class QRCodeExpired(QRPulseError):
    pass


class QRCodeInactive(QRPulseError):
    pass


class RateLimited(QRPulseError):
    def __init__(self, result):
        super().__init__("Rate limit exceeded")
        self.result = result


class ShortCodeExhausted(QRPulseError):
    """No free short code was found within the allowed attempts."""


class RateLimitStoreError(QRPulseError):
    """The rate-limit backing store could not be reached."""
