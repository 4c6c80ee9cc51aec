#!/usr/bin/env python3
"""
dbconvert Error Hierarchy
Canonical exception classes for the conversion engine.
"""

from enum import Enum


class ErrorCode(Enum):
    UNKNOWN = "UNKNOWN_ERROR"
    UNSUPPORTED_TYPE = "UNSUPPORTED_TYPE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CANCELLED = "CANCELLED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    BUSY = "CONVERSION_BUSY"


class ConverterError(Exception):
    """Base class for all conversion exceptions"""
    def __init__(self, message: str, code: ErrorCode = ErrorCode.UNKNOWN, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class UnsupportedTypeError(ConverterError):
    """Raised when a native type or value has no canonical mapping"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.UNSUPPORTED_TYPE, details)


class ValidationError(ConverterError):
    """Raised when schema input is structurally invalid"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


class CancellationError(ConverterError):
    """Raised when a run observes its cancellation flag"""
    def __init__(self, message: str = "Conversion cancelled", details: dict = None):
        super().__init__(message, ErrorCode.CANCELLED, details)


class TransportError(ConverterError):
    """Raised when the source or destination connection fails"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.TRANSPORT_ERROR, details)


class ConversionBusyError(ConverterError):
    """Raised when a conversion is started while another one is active"""
    def __init__(self, message: str = "Another conversion is already running", details: dict = None):
        super().__init__(message, ErrorCode.BUSY, details)
