from pathlib import Path

from .header import DEFAULT_TEMPLATES_DIR, RelayIOError


class TemplateStore:
    """Canned raw HTTP responses stored as ``<name>.http`` files."""

    def __init__(self, directory=DEFAULT_TEMPLATES_DIR):
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        return self.directory / f"{name}.http"

    def load(self, name: str) -> str:
        """
        Read a template as text.

        Raises:
            RelayIOError: The file is missing or unreadable
        """
        path = self.path_for(name)
        try:
            # newline="" keeps the CRLF line endings of the stored response
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise RelayIOError(f"cannot load template {path}: {e}") from e
