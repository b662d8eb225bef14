#!/usr/bin/env -S python3 -B -u
"""
Structured Exception Hierarchy for hoptrace

This module provides the exception hierarchy used by the probing engine,
with user-friendly error messages and suggestions for error resolution.

Key Features:
- Structured exceptions for configuration, validation and execution errors
- Suggested actions for error resolution
- Debug information available only in verbose mode
- Consistent exit codes for the command-line entry point

Timeouts, cancellation and "destination not reached" are run results,
not exceptions; see hoptrace.core.models.RunOutcome.
"""

import sys
import traceback
from typing import Optional, Dict, Any, List
from enum import IntEnum


class ErrorCode(IntEnum):
    """Standard exit codes for the application."""
    SUCCESS = 0
    MAX_HOPS_EXHAUSTED = 1
    INVALID_INPUT = 10
    CONFIGURATION_ERROR = 11
    EXECUTION_ERROR = 12
    INTERNAL_ERROR = 15
    CANCELLED = 130


class HoptraceError(Exception):
    """
    Base exception class for all hoptrace errors.

    Provides structured error information with user-friendly messages
    and suggested actions for resolution.
    """

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        """
        Initialize error with structured information.

        Args:
            message: User-friendly error message
            suggestion: Suggested action to resolve the error
            error_code: Exit code for the error
            details: Additional error details (shown only in verbose mode)
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

    def format_error(self, verbose_level: int = 0) -> str:
        """
        Format error message based on verbosity level.

        Args:
            verbose_level: 0=basic, 1=verbose, 2=debug, 3=full details

        Returns:
            Formatted error message
        """
        lines = [f"Error: {self.message}"]

        if self.suggestion:
            lines.append(f"Suggestion: {self.suggestion}")

        if verbose_level >= 1 and self.details:
            lines.append("\nDetails:")
            for key, value in self.details.items():
                lines.append(f"  {key}: {value}")

        if verbose_level >= 2 and self.cause:
            lines.append(f"\nCaused by: {type(self.cause).__name__}: {str(self.cause)}")

        if verbose_level >= 3:
            lines.append("\nStack trace:")
            tb = traceback.format_exc()
            if tb and tb != 'NoneType: None\n':
                lines.append(tb)
            elif self.__traceback__ is not None:
                lines.append(''.join(traceback.format_tb(self.__traceback__)))
            else:
                lines.append("(No active exception - stack trace not available)")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable summary for JSON output."""
        return {
            'type': type(self).__name__,
            'message': self.message,
            'suggestion': self.suggestion,
            'error_code': int(self.error_code),
        }


# Configuration and Setup Errors

class ConfigurationError(HoptraceError):
    """Raised when probing cannot start because of the local setup."""

    def __init__(self, message: str, config_file: Optional[str] = None, **kwargs):
        suggestion = kwargs.pop('suggestion', None) or "Check your hoptrace configuration file and environment."
        if config_file:
            suggestion += f" Configuration file: {config_file}"
            kwargs['details'] = kwargs.get('details', {})
            kwargs['details']['config_file'] = config_file
        super().__init__(
            message=message,
            suggestion=suggestion,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            **kwargs
        )


class ConfigFileError(ConfigurationError):
    """Raised when an explicitly requested configuration file cannot be loaded."""

    def __init__(self, config_file: str, reason: str, **kwargs):
        details = kwargs.get('details', {})
        details['reason'] = reason
        kwargs['details'] = details
        super().__init__(
            message=f"Cannot load configuration file: {config_file}",
            config_file=config_file,
            **kwargs
        )


class UnsupportedPlatformError(ConfigurationError):
    """Raised when no probing utility is known for the running platform."""

    def __init__(self, platform_name: str, supported: Optional[List[str]] = None, **kwargs):
        details = kwargs.get('details', {})
        details.update({
            "platform": platform_name,
            "supported": supported or [],
        })
        kwargs['details'] = details
        super().__init__(
            message=f"Unsupported platform: {platform_name}",
            suggestion=(
                "hoptrace drives the system traceroute utility. "
                f"Supported platforms: {', '.join(supported or [])}"
            ),
            **kwargs
        )


class SingleHopUnsupportedError(ConfigurationError):
    """Raised when the platform's utility cannot target one exact hop distance."""

    def __init__(self, platform_name: str, **kwargs):
        details = kwargs.get('details', {})
        details['platform'] = platform_name
        kwargs['details'] = details
        super().__init__(
            message=f"{platform_name} probing utility cannot probe a single hop distance",
            suggestion="Use the sequential strategy on this platform (strategy: sequential).",
            **kwargs
        )


class ProbeBinaryNotFoundError(ConfigurationError):
    """Raised when the probing utility cannot be located."""

    def __init__(self, binary: str, searched: Optional[List[str]] = None, **kwargs):
        details = kwargs.get('details', {})
        details.update({
            "binary": binary,
            "searched": searched or [],
        })
        kwargs['details'] = details
        super().__init__(
            message=f"Probing utility '{binary}' not found",
            **kwargs
        )
        # Override suggestion after parent init
        self.suggestion = (
            "Install the traceroute utility or point hoptrace at it:\n"
            "  1. Debian/Ubuntu: apt install traceroute\n"
            "  2. Set environment variable: export HOPTRACE_TRACEROUTE_BIN=/path/to/traceroute\n"
            "  3. Or set 'binaries' in hoptrace.yaml"
        )


# Validation Errors

class ValidationError(HoptraceError):
    """Base class for input validation errors."""

    def __init__(self, field: str, value: Any, requirement: str, **kwargs):
        super().__init__(
            message=f"Invalid {field}: {value}",
            suggestion=f"The {field} must {requirement}",
            error_code=ErrorCode.INVALID_INPUT,
            details={"field": field, "value": value, "requirement": requirement},
            **kwargs
        )


class InvalidDestinationError(ValidationError):
    """Raised when the destination is empty or obviously malformed."""

    def __init__(self, destination: str, **kwargs):
        super().__init__(
            field="destination",
            value=repr(destination),
            requirement="be a host name or an IPv4 address (e.g. example.com, 93.184.216.34)",
            **kwargs
        )


# Execution Errors

class ExecutionError(HoptraceError):
    """Base class for execution-related errors."""
    pass


class ProbeProcessError(ExecutionError):
    """Raised when a probe invocation cannot be started."""

    def __init__(self, command: List[str], reason: str, **kwargs):
        super().__init__(
            message=f"Failed to start probe process: {reason}",
            suggestion=(
                "The probing utility could not be executed. Check:\n"
                "  1. The binary exists and is executable\n"
                "  2. The system allows spawning more processes"
            ),
            error_code=ErrorCode.EXECUTION_ERROR,
            details={"command": " ".join(command), "reason": reason},
            **kwargs
        )


# Error Handler Utility

class ErrorHandler:
    """Utility class for consistent error handling across the application."""

    @staticmethod
    def handle_error(error: Exception, verbose_level: int = 0) -> int:
        """
        Handle an error and return appropriate exit code.

        Args:
            error: The exception to handle
            verbose_level: Verbosity level (0-3)

        Returns:
            Exit code for the application
        """
        if isinstance(error, HoptraceError):
            print(error.format_error(verbose_level), file=sys.stderr)
            return error.error_code

        print("Error: An unexpected error occurred", file=sys.stderr)
        print("Suggestion: This might be a bug. Please report it with the full error output.", file=sys.stderr)

        if verbose_level >= 1:
            print(f"\nError type: {type(error).__name__}", file=sys.stderr)
            print(f"Error message: {str(error)}", file=sys.stderr)

        if verbose_level >= 3:
            print("\nStack trace:", file=sys.stderr)
            traceback.print_exception(type(error), error, error.__traceback__, file=sys.stderr)

        return ErrorCode.INTERNAL_ERROR
