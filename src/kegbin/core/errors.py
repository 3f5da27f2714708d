"""Module defining custom exceptions for kegbin."""

from __future__ import annotations

from typing import Any, Self

# Exit Codes
EXIT_SUCCESS = 0
EXIT_USER_ERROR = 1
EXIT_SYSTEM_ERROR = 2
EXIT_TRANSIENT_ERROR = 3

PUBLISHING_HINT = (
    "It looks like the package does not ship a kegbin formula.\n"
    "If you are the package owner, add a Cask.toml to the root of the repository\n"
    "(or of a sibling '<repository>-cask' repository) to publish it."
)


class KegError(Exception):
    """Base exception class with context propagation.

    All exceptions raised by kegbin inherit from this class.
    Context is a dictionary that accumulates relevant information
    as the exception propagates up the call stack.

    Example:
        raise KegError("An error occurred", context={"package": "foo"})

        # Or with context propagation
        try:
            ...
        except KegError as e:
            raise e.with_context(operation="install")
    """
    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def with_context(self, **new_context: Any) -> Self:
        """Returns the exception with updated context.

        Args:
            **new_context: Additional context to add to the exception.

        Returns:
            The same instance with merged context.
        """
        self.context.update(new_context)
        return self

    def __str__(self) -> str:
        """String representation of the exception including context."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


class TransientError(KegError):
    """Errors caused by temporary conditions such as network failures.

    The pipeline never retries these on its own; the user may simply
    run the command again.
    """
    pass


class UserError(KegError):
    """Errors caused by user actions or inputs.

    These should not be retried without correcting the input. The CLI
    shows a helpful message instead of a traceback.
    """
    pass


class SystemError(KegError):
    """Errors due to the local environment (filesystem, permissions, hooks)."""
    pass


def _ctx(context: dict[str, Any] | None, **values: Any) -> dict[str, Any]:
    ctx = context or {}
    for key, value in values.items():
        if value is not None:
            ctx[key] = value
    return ctx


## Remote errors ##

class RemoteUnavailable(TransientError):
    """A repository or download location could not be reached.

    Typically indicates:
        - Network issues
        - Git hosting outages
        - A subprocess that ran past its deadline
    """
    def __init__(
        self,
        message: str | None = None,
        url: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, url=url)
        if message is None:
            message = f"Remote '{url or 'unknown'}' is unavailable"
        super().__init__(message, context=ctx)


class RepositoryNotFound(RemoteUnavailable):
    """The remote repository does not exist (git exit code 128)."""
    def __init__(
        self,
        message: str | None = None,
        url: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        if message is None:
            message = f"Can not find remote repository '{url or 'unknown'}'"
        super().__init__(message, url=url, context=context)


class CommandFailed(RemoteUnavailable):
    """A subprocess exited with a non-zero code."""
    def __init__(
        self,
        message: str | None = None,
        command: str | None = None,
        returncode: int | None = None,
        error: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        """Initialise CommandFailed with detailed context.

        Args:
            message: Optional custom error message.
            command: The command that was executed.
            returncode: The exit code returned by the command.
            error: The error output from the command.
            context: Additional context information.
        """
        ctx = _ctx(context, command=command, returncode=returncode, error=error)
        if message is None:
            message = f"Command failed with exit code {returncode if returncode is not None else 'unknown'}"
        super().__init__(message, context=ctx)


class CommandTimeout(RemoteUnavailable):
    """A subprocess ran past its deadline and was killed."""
    def __init__(
        self,
        message: str | None = None,
        command: str | None = None,
        timeout: float | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, command=command, timeout=timeout)
        if message is None:
            message = f"Command timed out after {timeout or 'unknown'}s"
        super().__init__(message, context=ctx)


class DownloadError(RemoteUnavailable):
    """HTTP download failed."""
    pass


## Formula errors ##

class NotAFormula(UserError):
    """The repository exists but does not contain a Cask.toml."""
    def __init__(
        self,
        message: str | None = None,
        package: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, package=package)
        if message is None:
            message = f"'{package or 'unknown'}' is not a valid formula"
        super().__init__(message, context=ctx)


class ManifestError(UserError):
    """The manifest could not be read or does not follow the formula schema."""
    pass


class InvalidPackageIdentifier(UserError):
    """The package identifier is neither a http(s) URL nor a bare name."""
    pass


class UnsupportedPlatform(UserError):
    """The formula has no download for the running OS/architecture."""
    def __init__(
        self,
        message: str | None = None,
        package: str | None = None,
        os: str | None = None,
        arch: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, package=package, os=os, arch=arch)
        if message is None:
            message = f"The package '{package or 'unknown'}' does not support your system"
        super().__init__(message, context=ctx)


## Installation errors ##

class UnsupportedContainer(UserError):
    """The archive suffix is not one of the supported container formats."""
    def __init__(
        self,
        message: str | None = None,
        path: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, path=path)
        if message is None:
            message = f"Can not extract file from '{path or 'unknown'}'"
        super().__init__(message, context=ctx)


class EntryNotFound(UserError):
    """The requested file is absent from the archive."""
    def __init__(
        self,
        message: str | None = None,
        filename: str | None = None,
        folder: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, filename=filename, folder=folder)
        if message is None:
            message = f"Can not find file '{filename}' in the '{folder}' of the archive"
        super().__init__(message, context=ctx)


class ChecksumMismatch(SystemError):
    """Downloaded content does not match the declared SHA-256."""
    def __init__(
        self,
        message: str | None = None,
        path: str | None = None,
        expected: str | None = None,
        actual: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, path=path, expected=expected, actual=actual)
        if message is None:
            message = "Checksum mismatch for downloaded file"
        super().__init__(message, context=ctx)


class BinaryNameConflict(UserError):
    """Another installed package already owns the executable name."""
    def __init__(
        self,
        message: str | None = None,
        bin: str | None = None,
        owner: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, bin=bin, owner=owner)
        if message is None:
            message = f"The command '{bin}' is already provided by package '{owner}'"
        super().__init__(message, context=ctx)


class NoVersionsAvailable(UserError):
    """No release could be selected for the package."""
    def __init__(
        self,
        message: str | None = None,
        package: str | None = None,
        constraint: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, package=package, constraint=constraint)
        if message is None:
            message = f"Can not find any version of '{package or 'unknown'}' on remote"
        super().__init__(message, context=ctx)


class InvalidVersionConstraint(UserError):
    """The version range expression could not be parsed."""
    def __init__(
        self,
        message: str | None = None,
        constraint: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, constraint=constraint)
        if message is None:
            message = f"Invalid version constraint '{constraint}'"
        super().__init__(message, context=ctx)


class PackageNotInstalled(UserError):
    """No installed package matches the given name or executable."""
    def __init__(
        self,
        message: str | None = None,
        package: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, package=package)
        if message is None:
            message = f"Can not find the installed package '{package or 'unknown'}'"
        super().__init__(message, context=ctx)


class NotUpgradeable(UserError):
    """The package was installed from a local manifest and has no remote."""
    pass


class HookFailed(SystemError):
    """A preinstall/postinstall hook exited with a non-zero code."""
    def __init__(
        self,
        message: str | None = None,
        hook: str | None = None,
        returncode: int | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, hook=hook, returncode=returncode)
        if message is None:
            message = f"The '{hook}' hook failed with exit code {returncode}"
        super().__init__(message, context=ctx)


class StoreError(SystemError):
    """Filesystem errors inside the package store."""
    def __init__(
        self,
        message: str | None = None,
        path: str | None = None,
        operation: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = _ctx(context, path=path, operation=operation)
        if message is None:
            op_str = f" {operation}" if operation else ""
            message = f"Store{op_str} operation failed"
        super().__init__(message, context=ctx)


# CLI Error Message Templates

ERROR_TEMPLATES = {
    NotAFormula: (
        "❌ {message}\n"
        "   Suggestion: Check the package name or publish a Cask.toml for it"
    ),
    PackageNotInstalled: (
        "❌ {message}\n"
        "   Suggestion: Run 'kegbin list' to see installed packages"
    ),
    BinaryNameConflict: (
        "❌ Command '{bin}' is already provided by '{owner}'\n"
        "   Uninstall '{owner}' first if you want to replace it"
    ),
    ChecksumMismatch: (
        "⚠️ Checksum mismatch: {path}\n"
        "   Expected: {expected}\n"
        "   Got:      {actual}\n"
        "   The downloaded file has been removed"
    ),
    CommandTimeout: (
        "⚠️ Command timed out after {timeout}s: {command}\n"
        "   The operation took too long - this may be due to network issues"
    ),
    CommandFailed: (
        "⚠️ Command failed: {command}\n"
        "   Exit Code: {returncode}"
    ),
    HookFailed: (
        "⚠️ The '{hook}' hook failed with exit code {returncode}"
    ),
    TransientError: (
        "⚠️ Temporary failure: {message}\n"
        "   This may resolve itself - try again in a moment"
    ),
    UserError: (
        "❌ {message}"
    ),
    SystemError: (
        "⚠️ System error: {message}\n"
        "   Please check your system configuration and try again"
    ),
    KegError: (
        "❌ {message}"
    ),
}


def format_error_message(error: KegError) -> str:
    """Formats an error message for CLI display based on the error type.

    The most specific template along the class hierarchy wins.

    Args:
        error: The KegError instance to format.

    Returns:
        A formatted string message for CLI display.
    """
    template = ERROR_TEMPLATES[KegError]
    for cls in type(error).__mro__:
        if cls in ERROR_TEMPLATES:
            template = ERROR_TEMPLATES[cls]
            break
    try:
        return template.format(message=error.message, **getattr(error, "context", {}))
    except KeyError:
        return f"❌ {error.message}"
