from typing import Optional, Any
from datetime import datetime, timezone
from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from pydantic import BaseModel, ConfigDict, Field


IdentityKey = tuple[str, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialRecord(BaseModel):
    """A single domain credential.

    The identity key is the ``(domain, username)`` pair; every other field
    can change without changing which record this is.
    """

    model_config = ConfigDict(populate_by_name=True)

    domain: str = Field(min_length=1)
    url: str = ""
    username: str = ""
    password: str = Field(default="", repr=False)
    notes: str = Field(default="", repr=False)
    date_added: datetime = Field(default_factory=utcnow, alias="dateAdded")

    @property
    def identity(self) -> IdentityKey:
        return (self.domain, self.username)

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-ready, camelCase form used on the wire."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "CredentialRecord":
        return cls.model_validate(data)


def domain_matches(stored: str, requested: str) -> bool:
    """True when domains are equal or one is a subdomain of the other."""
    return (
        stored == requested
        or requested.endswith('.' + stored)
        or stored.endswith('.' + requested)
    )


class CredentialSet(MutableMapping[IdentityKey, CredentialRecord]):
    """Credential collection keyed by identity.

    Keying by ``(domain, username)`` makes duplicates unrepresentable:
    writing a record whose identity already exists replaces it in place.
    Iteration follows insertion order, but equality ignores it.
    """

    def __init__(
        self,
        records: Optional[Iterable[CredentialRecord]] = None
    ) -> None:
        self._records: dict[IdentityKey, CredentialRecord] = {}
        if records is not None:
            for record in records:
                self.upsert(record)

    def __repr__(self) -> str:
        # identities only; usernames are left out on purpose
        domains = sorted({domain for domain, _ in self._records})
        return f'<CredentialSet [{len(self)} record(s)] domains={domains!r}>'

    # --- Record helpers ---

    def upsert(self, record: CredentialRecord) -> bool:
        """Insert or replace a record. Returns True if one was replaced."""
        replaced = record.identity in self._records
        self._records[record.identity] = record
        return replaced

    def remove(self, domain: str, username: str) -> CredentialRecord:
        """Remove and return a record, raising KeyError when absent."""
        return self._records.pop((domain, username))

    def has(self, domain: str, username: str) -> bool:
        return (domain, username) in self._records

    def for_domain(self, domain: str) -> list[CredentialRecord]:
        return [
            record for record in self._records.values()
            if domain_matches(record.domain, domain)
        ]

    def records(self) -> list[CredentialRecord]:
        return list(self._records.values())

    def copy(self) -> "CredentialSet":
        return CredentialSet(
            record.model_copy() for record in self._records.values()
        )

    def to_documents(self) -> list[dict[str, Any]]:
        return [record.to_document() for record in self._records.values()]

    @classmethod
    def from_documents(
        cls,
        documents: Iterable[Mapping[str, Any]]
    ) -> "CredentialSet":
        return cls(CredentialRecord.from_document(doc) for doc in documents)

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[IdentityKey]:
        return iter(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __getitem__(self, key: IdentityKey) -> CredentialRecord:
        return self._records[key]

    def __setitem__(self, key: IdentityKey, record: CredentialRecord) -> None:
        if tuple(key) != record.identity:
            raise ValueError(
                "Credential identity does not match the key it is stored under"
            )
        self._records[record.identity] = record

    def __delitem__(self, key: IdentityKey) -> None:
        del self._records[key]
