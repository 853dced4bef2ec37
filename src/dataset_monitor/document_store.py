"""
Document Store module for ingested datasets and dedup state.

This module provides HMAC-protected, directory-backed storage for:
- the processed-id records (one envelope file for all providers)
- the canonical dataset documents (one envelope file per dataset)

Every file uses the same envelope: {version, created_at, updated_at, data, hmac},
where the HMAC covers everything except itself. A mismatch on load raises
TamperingError.
"""

import hashlib
import hmac
import json
import os
import re
from pathlib import Path
from typing import Iterable, Optional

from .enums import ProcessingStatus
from .exceptions import StorageError, TamperingError
from .models import DatasetDocument, ProcessedIdRecord, utc_now

PROCESSED_IDS_FILE = "processed_dataset_ids.json"
DATASETS_DIR = "datasets"

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class DocumentStore:
    """
    Persistent document storage with HMAC protection.

    Layout under the root directory:
        processed_dataset_ids.json
        datasets/<provider>/<sha256 of external id>.json
    """

    VERSION = 1

    def __init__(self, root: Path, hmac_secret: str) -> None:
        """
        Initialize the document store.

        Args:
            root: Directory holding all store files (created on first write)
            hmac_secret: Secret key for HMAC computation
        """
        self._root = Path(root)
        self._hmac_secret = hmac_secret.encode("utf-8")
        # provider -> external id -> record fields
        self._records: Optional[dict[str, dict[str, dict]]] = None
        self._records_created_at: Optional[str] = None

    @property
    def root(self) -> Path:
        return self._root

    @property
    def processed_ids_path(self) -> Path:
        return self._root / PROCESSED_IDS_FILE

    def compute_hmac(self, data: dict) -> str:
        """Compute HMAC-SHA256 over canonically serialized data."""
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    # Envelope I/O

    def _read_envelope(self, path: Path) -> Optional[dict]:
        """Load and verify an envelope file. Returns None if it does not exist."""
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise StorageError(
                code="parse_error",
                message=f"Failed to parse store file: {e}",
                details={"file_path": str(path)},
            ) from e
        except OSError as e:
            raise StorageError(
                code="io_error",
                message=f"Failed to read store file: {e}",
                details={"file_path": str(path)},
            ) from e

        if not isinstance(raw, dict):
            raise StorageError(
                code="parse_error",
                message="Store file does not contain an envelope object",
                details={"file_path": str(path)},
            )

        stored_hmac = raw.get("hmac", "")
        computed_hmac = self.compute_hmac({
            "version": raw.get("version"),
            "created_at": raw.get("created_at"),
            "updated_at": raw.get("updated_at"),
            "data": raw.get("data"),
        })
        if not isinstance(stored_hmac, str) or not hmac.compare_digest(stored_hmac, computed_hmac):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - data may have been tampered with",
                details={"file_path": str(path)},
            )
        return raw

    def _write_envelope(self, path: Path, data: dict, created_at: Optional[str] = None) -> str:
        """Write data wrapped in an HMAC envelope. Returns the envelope's created_at."""
        now = utc_now().isoformat()
        envelope = {
            "version": self.VERSION,
            "created_at": created_at or now,
            "updated_at": now,
            "data": data,
        }
        envelope["hmac"] = self.compute_hmac(envelope)

        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(envelope, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(
                code="io_error",
                message=f"Failed to write store file: {e}",
                details={"file_path": str(path)},
            ) from e
        return envelope["created_at"]

    # Processed ids

    def _load_records(self) -> dict[str, dict[str, dict]]:
        if self._records is None:
            envelope = self._read_envelope(self.processed_ids_path)
            if envelope is None:
                self._records = {}
                self._records_created_at = None
            else:
                data = envelope.get("data") or {}
                self._records = {
                    provider: dict(ids) for provider, ids in (data.get("providers") or {}).items()
                }
                self._records_created_at = envelope.get("created_at")
        return self._records

    def _save_records(self) -> None:
        records = self._load_records()
        self._records_created_at = self._write_envelope(
            self.processed_ids_path,
            {"providers": records},
            created_at=self._records_created_at,
        )

    def get_known_ids(self, provider: str) -> set[str]:
        """All external ids ever recorded for a provider, whatever their status."""
        return set(self._load_records().get(provider, {}))

    def get_pending_ids(self, provider: str) -> list[str]:
        """Pending external ids for a provider, in the order they were discovered."""
        return [
            dataset_id
            for dataset_id, fields in self._load_records().get(provider, {}).items()
            if fields.get("status") == ProcessingStatus.PENDING.value
        ]

    def save_pending_ids(self, provider: str, dataset_ids: Iterable[str]) -> int:
        """
        Record new external ids as pending.

        Ids already known to the provider are left untouched, so a record is
        never re-created or moved back to pending.

        Returns:
            Number of records actually created
        """
        records = self._load_records()
        provider_records = records.setdefault(provider, {})
        now = utc_now().isoformat()

        created = 0
        for dataset_id in dataset_ids:
            if dataset_id in provider_records:
                continue
            provider_records[dataset_id] = {
                "status": ProcessingStatus.PENDING.value,
                "created_at": now,
                "updated_at": now,
            }
            created += 1

        if created:
            self._save_records()
        return created

    def mark_processed(self, provider: str, dataset_ids: Iterable[str]) -> int:
        """
        Move pending ids to processed in one write.

        Unknown or already processed ids are ignored.

        Returns:
            Number of records that changed status
        """
        provider_records = self._load_records().get(provider, {})
        now = utc_now().isoformat()

        changed = 0
        for dataset_id in dataset_ids:
            fields = provider_records.get(dataset_id)
            if fields is None or fields.get("status") != ProcessingStatus.PENDING.value:
                continue
            fields["status"] = ProcessingStatus.PROCESSED.value
            fields["updated_at"] = now
            changed += 1

        if changed:
            self._save_records()
        return changed

    def get_processed_record(self, provider: str, dataset_id: str) -> Optional[ProcessedIdRecord]:
        fields = self._load_records().get(provider, {}).get(dataset_id)
        if fields is None:
            return None
        return ProcessedIdRecord(
            center_name=provider,
            dataset_id=dataset_id,
            status=ProcessingStatus(fields["status"]),
            created_at=fields["created_at"],
            updated_at=fields["updated_at"],
        )

    # Dataset documents

    def _provider_dir(self, provider: str) -> Path:
        return self._root / DATASETS_DIR / (_UNSAFE_PATH_CHARS.sub("_", provider) or "_")

    def _dataset_path(self, provider: str, raw_id: str) -> Path:
        digest = hashlib.sha256(raw_id.encode("utf-8")).hexdigest()
        return self._provider_dir(provider) / f"{digest}.json"

    def upsert_dataset(self, document: DatasetDocument) -> None:
        """Insert or replace a dataset document, keyed by provider and external id."""
        path = self._dataset_path(document.center_name, document.raw_id)
        existing = self._read_envelope(path)
        self._write_envelope(
            path,
            document.body,
            created_at=existing.get("created_at") if existing else None,
        )

    def get_dataset(self, provider: str, raw_id: str) -> Optional[DatasetDocument]:
        envelope = self._read_envelope(self._dataset_path(provider, raw_id))
        if envelope is None:
            return None
        return DatasetDocument.from_stored(envelope["data"])

    def get_datasets(self, provider: str) -> list[DatasetDocument]:
        """
        All stored documents of a provider whose '@type' mentions 'dataset'.

        Raises:
            TamperingError: If any document fails HMAC validation
        """
        directory = self._provider_dir(provider)
        if not directory.is_dir():
            return []

        documents = []
        for path in sorted(directory.glob("*.json")):
            envelope = self._read_envelope(path)
            if envelope is None:
                continue
            document = DatasetDocument.from_stored(envelope["data"])
            if document.center_name == provider and document.is_dataset():
                documents.append(document)
        return documents
