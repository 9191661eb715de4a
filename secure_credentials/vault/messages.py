"""
Typed request/response boundary for callers such as a UI or extension host.

Each vault operation has exactly one request model, discriminated by its
``action`` literal. ``dispatch`` runs a request and wraps the outcome in a
``Response``; vault errors become ``ok=False`` results carrying the error
kind, anything else propagates.
"""
import logging
from typing import Annotated, Any, Literal, Optional, Union
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from ..data import CredentialRecord
from ..exceptions import VaultError
from .credential_vault import CredentialVault

logger = logging.getLogger("secure_credentials.vault")


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Initialize(_Request):
    action: Literal["initialize"] = "initialize"
    master_password: str = Field(alias="masterPassword", repr=False)


class Unlock(_Request):
    action: Literal["unlock"] = "unlock"
    master_password: str = Field(alias="masterPassword", repr=False)


class Lock(_Request):
    action: Literal["lock"] = "lock"


class IsUnlocked(_Request):
    action: Literal["isUnlocked"] = "isUnlocked"


class ListCredentials(_Request):
    action: Literal["listCredentials"] = "listCredentials"


class CredentialsForDomain(_Request):
    action: Literal["credentialsForDomain"] = "credentialsForDomain"
    domain: str


class SaveCredential(_Request):
    action: Literal["saveCredential"] = "saveCredential"
    credential: CredentialRecord


class DeleteCredential(_Request):
    action: Literal["deleteCredential"] = "deleteCredential"
    domain: str
    username: str


class ChangeMasterPassword(_Request):
    action: Literal["changeMasterPassword"] = "changeMasterPassword"
    current_password: str = Field(alias="currentPassword", repr=False)
    new_password: str = Field(alias="newPassword", repr=False)


class GetSettings(_Request):
    action: Literal["getSettings"] = "getSettings"


class SaveSettings(_Request):
    action: Literal["saveSettings"] = "saveSettings"
    settings: dict[str, Any]


class ExportCredentials(_Request):
    action: Literal["exportCredentials"] = "exportCredentials"
    master_password: str = Field(alias="masterPassword", repr=False)
    passphrase: Optional[str] = Field(default=None, repr=False)


class ImportCredentials(_Request):
    action: Literal["importCredentials"] = "importCredentials"
    import_data: Union[str, dict[str, Any]] = Field(alias="importData", repr=False)
    master_password: str = Field(alias="masterPassword", repr=False)
    passphrase: Optional[str] = Field(default=None, repr=False)


Request = Annotated[
    Union[
        Initialize,
        Unlock,
        Lock,
        IsUnlocked,
        ListCredentials,
        CredentialsForDomain,
        SaveCredential,
        DeleteCredential,
        ChangeMasterPassword,
        GetSettings,
        SaveSettings,
        ExportCredentials,
        ImportCredentials,
    ],
    Field(discriminator="action"),
]

_request_adapter: TypeAdapter = TypeAdapter(Request)


class ErrorInfo(BaseModel):
    kind: str
    message: str


class Response(BaseModel):
    ok: bool
    result: Any = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def success(cls, result: Any = None) -> "Response":
        return cls(ok=True, result=result)

    @classmethod
    def failure(cls, err: VaultError) -> "Response":
        return cls(
            ok=False,
            error=ErrorInfo(kind=type(err).__name__, message=str(err)),
        )


def parse_request(payload: Mapping[str, Any]) -> Request:
    """Validate a raw payload into its request variant.

    Raises:
        pydantic.ValidationError: Unknown action or bad fields.
    """
    return _request_adapter.validate_python(dict(payload))


async def _run(vault: CredentialVault, request: Request) -> Any:
    if isinstance(request, Initialize):
        await vault.initialize(request.master_password)
        return None
    if isinstance(request, Unlock):
        await vault.unlock(request.master_password)
        return None
    if isinstance(request, Lock):
        vault.lock()
        return None
    if isinstance(request, IsUnlocked):
        return vault.check_session()
    if isinstance(request, ListCredentials):
        return (await vault.list_credentials()).to_documents()
    if isinstance(request, CredentialsForDomain):
        records = await vault.credentials_for_domain(request.domain)
        return [record.to_document() for record in records]
    if isinstance(request, SaveCredential):
        return await vault.upsert(request.credential)
    if isinstance(request, DeleteCredential):
        await vault.delete(request.domain, request.username)
        return None
    if isinstance(request, ChangeMasterPassword):
        return await vault.change_master_password(
            request.current_password, request.new_password,
        )
    if isinstance(request, GetSettings):
        return (await vault.get_settings()).to_document()
    if isinstance(request, SaveSettings):
        return (await vault.save_settings(request.settings)).to_document()
    if isinstance(request, ExportCredentials):
        return await vault.export(request.master_password, request.passphrase)
    if isinstance(request, ImportCredentials):
        return await vault.import_credentials(
            request.import_data, request.master_password, request.passphrase,
        )
    raise TypeError(f"Unsupported request type: {type(request).__name__}")


async def dispatch(vault: CredentialVault, request: Request) -> Response:
    """Run ``request`` against ``vault`` and wrap the outcome."""
    try:
        result = await _run(vault, request)
    except VaultError as err:
        logger.debug("Request %s failed: %s", request.action, type(err).__name__)
        return Response.failure(err)
    return Response.success(result)
