"""Persisted session cookies.

The cookie file is the only on-disk state shared between login (writer) and
scraping (reader). Writes go to a temp file in the same directory and are
swapped in with `os.replace`, so a reader sees either the old bundle or the
new one, never a half-written file.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path

from .errors import CorruptError, NotFoundError, StorageError
from .models import Credential, CredentialBundle


X_DOMAIN = "x.com"


class SessionStore:
    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def save(self, bundle: CredentialBundle) -> None:
        data = json.dumps(bundle.to_dict(), ensure_ascii=False, indent=2)
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(prefix=".cookies-", suffix=".tmp", dir=str(self.path.parent))
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(data)
                    os.chmod(tmp, 0o600)
                    os.replace(tmp, self.path)
                except BaseException:
                    Path(tmp).unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise StorageError(f"could not write {self.path}: {e}") from e

    def load(self) -> CredentialBundle:
        with self._lock:
            try:
                raw = self.path.read_text(encoding="utf-8")
            except FileNotFoundError as e:
                raise NotFoundError(f"no stored session at {self.path}") from e
            except OSError as e:
                raise StorageError(f"could not read {self.path}: {e}") from e
        try:
            return CredentialBundle.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CorruptError(f"stored session at {self.path} is unreadable: {e}") from e

    def is_valid(self) -> bool:
        try:
            bundle = self.load()
        except Exception:
            return False
        return bundle.is_valid()

    def clear(self) -> None:
        with self._lock:
            try:
                self.path.unlink()
            except FileNotFoundError as e:
                raise NotFoundError(f"no stored session at {self.path}") from e
            except OSError as e:
                raise StorageError(f"could not delete {self.path}: {e}") from e

    def scoped_credentials(self, domain_suffix: str = X_DOMAIN) -> list[Credential]:
        return self.load().scoped(domain_suffix)
