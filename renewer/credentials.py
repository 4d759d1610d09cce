import json
from pathlib import Path


class CredentialStore:
    """String key/value store persisted as one JSON object on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._values: dict[str, str] = {}
        if self.path.exists():
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                self._values = {str(k): str(v) for k, v in data.items()}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self._values, f, indent=2)
