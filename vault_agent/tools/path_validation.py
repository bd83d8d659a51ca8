"""Keep tool paths inside the vault directory."""

import posixpath
from pathlib import Path
from typing import Any

from vault_agent.exceptions import VaultPathError

_ROOT_ALIASES = {"", ".", "./", "/"}


class PathValidator:
    """Validate and normalize paths relative to a vault root.

    Normalized paths are vault-relative POSIX strings; ``""`` means the root.
    """

    def __init__(self, vault_root: Path | str):
        self.vault_root = Path(vault_root).expanduser().resolve()

    def validate_and_normalize(self, input_path: Any) -> str:
        """Return the vault-relative form of ``input_path``.

        Raises:
            VaultPathError if the path is not a string or escapes the vault
        """
        if not isinstance(input_path, str):
            raise VaultPathError(input_path, "Path must be a string")

        clean = input_path.strip().replace("\\", "/")
        if clean in _ROOT_ALIASES:
            return ""

        if Path(clean).is_absolute():
            absolute = Path(clean).resolve()
            try:
                relative = absolute.relative_to(self.vault_root)
            except ValueError:
                raise VaultPathError(
                    input_path,
                    f"Path '{clean}' is outside the vault. Only paths within the vault are allowed.",
                ) from None
            normalized = relative.as_posix()
        else:
            normalized = posixpath.normpath(clean)
            if normalized == ".." or normalized.startswith("../"):
                raise VaultPathError(
                    input_path,
                    f"Path '{clean}' attempts to access files outside the vault. "
                    "Only paths within the vault are allowed.",
                )

        normalized = normalized.lstrip("/")
        return "" if normalized == "." else normalized

    def to_absolute(self, input_path: Any) -> Path:
        """Resolve a path to an absolute location inside the vault."""
        relative = self.validate_and_normalize(input_path)
        absolute = (self.vault_root / relative).resolve()
        try:
            absolute.relative_to(self.vault_root)
        except ValueError:
            raise VaultPathError(input_path, f"Path '{input_path}' resolves outside the vault") from None
        return absolute

    def relative(self, absolute: Path) -> str:
        relative = absolute.resolve().relative_to(self.vault_root).as_posix()
        return "" if relative == "." else relative

    def paths_equal(self, first: Any, second: Any) -> bool:
        try:
            return self.validate_and_normalize(first) == self.validate_and_normalize(second)
        except VaultPathError:
            return False


def validator_for(kwargs: dict[str, Any]) -> PathValidator:
    """Build a validator from the registry-injected ``_vault_root``."""
    root = kwargs.get("_vault_root")
    return PathValidator(root if root is not None else Path.cwd())


def is_hidden(relative_path: str) -> bool:
    """Dot-prefixed segments (``.trash``, app config folders) are skipped by listings."""
    return any(part.startswith(".") for part in relative_path.split("/") if part)
