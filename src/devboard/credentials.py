"""
Credential Store
----------------
Persists one secret per service in a JSON document on local storage.

The file is loaded once, before the first read. Every change is written
atomically and published synchronously to subscribers, which is how the
orchestrator learns that a credential was cleared or replaced.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .errors import CredentialPersistenceError, CredentialStoreError
from .models import Credential, ServiceId

logger = logging.getLogger(__name__)

CredentialListener = Callable[[ServiceId, Optional[str]], None]


def mask_secret(secret: Optional[str]) -> str:
    """Render a secret safely for logs."""
    if not secret:
        return "<none>"
    return f"{secret[:4]}..." if len(secret) > 8 else "****"


class CredentialStore:
    """Durable per-service secret storage."""

    def __init__(self, path: Path):
        """
        Initialize the store.

        Args:
            path: JSON file holding the credentials. Created on first write.
        """
        self.path = Path(path)
        self._secrets: Dict[ServiceId, Optional[str]] = {}
        self._listeners: List[CredentialListener] = []
        self._lock = threading.RLock()
        self._loaded = False
        self._dirty = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def open(self) -> "CredentialStore":
        """
        Load persisted credentials.

        Raises:
            CredentialStoreError: If the file exists but cannot be parsed.
        """
        with self._lock:
            if self._loaded:
                return self
            self._secrets = {service: None for service in ServiceId}
            self._secrets.update(self._read())
            self._loaded = True
            configured = [s.value for s, v in self._secrets.items() if v]
            logger.info(f"Loaded credentials from {self.path} (configured: {configured})")
        return self

    def close(self) -> None:
        """
        Flush pending writes.

        Raises:
            CredentialPersistenceError: If a pending write still cannot be saved.
        """
        with self._lock:
            if self._loaded and self._dirty:
                self._write()

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.open()

    def _read(self) -> Dict[ServiceId, Optional[str]]:
        if not self.path.exists():
            logger.debug(f"No credential file at {self.path}")
            return {}

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CredentialStoreError(f"Cannot read credentials from {self.path}: {e}") from e

        if not isinstance(raw, dict):
            raise CredentialStoreError(f"Credential file {self.path} must contain an object")

        secrets: Dict[ServiceId, Optional[str]] = {}
        for key, value in raw.items():
            try:
                service = ServiceId(key)
            except ValueError:
                logger.warning(f"Ignoring unknown service '{key}' in {self.path}")
                continue
            secrets[service] = value if isinstance(value, str) and value else None
        return secrets

    def _write(self) -> None:
        payload = {s.value: v for s, v in self._secrets.items() if v is not None}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            self._dirty = True
            raise CredentialPersistenceError(
                f"Cannot write credentials to {self.path}: {e}"
            ) from e
        self._dirty = False

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    def get(self, service: ServiceId) -> Optional[str]:
        """Return the secret for a service, or None."""
        with self._lock:
            self._ensure_loaded()
            return self._secrets.get(ServiceId(service))

    def credential(self, service: ServiceId) -> Credential:
        return Credential(service=service, secret=self.get(service))

    def configured_services(self) -> List[ServiceId]:
        """Services that currently have a secret."""
        with self._lock:
            self._ensure_loaded()
            return [s for s in ServiceId if self._secrets.get(s)]

    def set(self, service: ServiceId, secret: Optional[str]) -> bool:
        """
        Replace the secret for a service and persist it.

        Blank secrets clear the credential. Subscribers are notified even if
        the write fails, since the in-memory value is already in effect.

        Args:
            service: Service to update.
            secret: New secret, or None to clear it.

        Returns:
            True if the change was persisted, False if it only lives in memory
            until the next successful write.
        """
        service = ServiceId(service)
        if secret is not None:
            secret = secret.strip() or None

        with self._lock:
            self._ensure_loaded()
            self._secrets[service] = secret
            try:
                self._write()
                persisted = True
            except CredentialPersistenceError as e:
                logger.warning(f"{e}. The new {service.value} credential may not survive a restart.")
                persisted = False

        logger.info(
            f"Credential for {service.value} {'cleared' if secret is None else 'set'} "
            f"({mask_secret(secret)})"
        )
        self._notify(service, secret)
        return persisted

    # -------------------------------------------------------------------------
    # Change notification
    # -------------------------------------------------------------------------

    def subscribe(self, listener: CredentialListener) -> Callable[[], None]:
        """
        Register a callback for credential changes.

        Returns:
            A function that removes the callback.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, service: ServiceId, secret: Optional[str]) -> None:
        for listener in list(self._listeners):
            listener(service, secret)
