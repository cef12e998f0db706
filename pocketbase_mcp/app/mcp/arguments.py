from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..template_loader import HOOK_TEMPLATES


def _clean_schema(node: Any) -> Any:
    """Drop pydantic's generated titles and collapse ``Optional[X]`` into ``X``."""

    if isinstance(node, list):
        return [_clean_schema(item) for item in node]
    if not isinstance(node, dict):
        return node

    any_of = node.get("anyOf")
    if isinstance(any_of, list):
        non_null = [item for item in any_of if item != {"type": "null"}]
        if len(non_null) == 1 and len(non_null) != len(any_of):
            merged = {key: value for key, value in node.items() if key != "anyOf"}
            merged.update(non_null[0])
            if merged.get("default", ...) is None:
                merged.pop("default")
            node = merged

    cleaned: Dict[str, Any] = {}
    for key, value in node.items():
        if key == "title" and isinstance(value, str):
            continue
        cleaned[key] = _clean_schema(value)
    return cleaned


class ToolArguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def input_schema(cls) -> Dict[str, Any]:
        return _clean_schema(cls.model_json_schema(by_alias=True))

    def query(self, *names: str) -> Dict[str, Any]:
        """Dump the named optional fields under their wire (camelCase) names."""

        return self.model_dump(by_alias=True, exclude_none=True, include=set(names))


class NoArguments(ToolArguments):
    pass


# Collections


class ListCollectionsArgs(ToolArguments):
    page: int = Field(1, ge=1, description="Page number (default: 1)")
    per_page: int = Field(30, ge=1, alias="perPage", description="Records per page (default: 30)")
    filter: Optional[str] = Field(None, description="Filter expression")
    sort: Optional[str] = Field(None, description="Sort expression")
    skip_total: Optional[bool] = Field(None, alias="skipTotal", description="Skip total count for performance")


class CollectionRefArgs(ToolArguments):
    id_or_name: str = Field(..., alias="idOrName", description="Collection ID or name")


class CollectionField(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    type: str
    required: Optional[bool] = None


class CreateCollectionArgs(ToolArguments):
    """Any other collection option (viewQuery, indexes, passwordAuth, ...) is passed through."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = Field(..., description="Collection name")
    type: Literal["base", "auth", "view"] = Field(..., description="Collection type")
    fields: Optional[List[CollectionField]] = Field(None, description="Collection fields")
    schema_fields: Optional[List[CollectionField]] = Field(
        None, alias="schema", description="Collection schema fields (PocketBase < 0.23)"
    )
    list_rule: Optional[str] = Field(None, alias="listRule", description="List access rule")
    view_rule: Optional[str] = Field(None, alias="viewRule", description="View access rule")
    create_rule: Optional[str] = Field(None, alias="createRule", description="Create access rule")
    update_rule: Optional[str] = Field(None, alias="updateRule", description="Update access rule")
    delete_rule: Optional[str] = Field(None, alias="deleteRule", description="Delete access rule")

    def payload(self) -> Dict[str, Any]:
        # exclude_unset keeps explicit nulls: a null rule means superusers only.
        return self.model_dump(by_alias=True, exclude_unset=True)


class UpdateCollectionArgs(CollectionRefArgs):
    data: Dict[str, Any] = Field(..., description="Collection update data (name, fields, rules, ...)")


class ImportCollectionsArgs(ToolArguments):
    collections: List[Dict[str, Any]] = Field(..., description="Array of collection definitions")
    delete_missing: bool = Field(False, alias="deleteMissing", description="Delete collections not in the import")


# Records


class RecordQueryArgs(ToolArguments):
    collection: str = Field(..., description="Collection name")
    expand: Optional[str] = Field(None, description="Relations to expand")
    fields: Optional[str] = Field(None, description="Specific fields to return")


class ListRecordsArgs(RecordQueryArgs):
    page: int = Field(1, ge=1, description="Page number (default: 1)")
    per_page: int = Field(30, ge=1, alias="perPage", description="Records per page (default: 30)")
    filter: Optional[str] = Field(None, description="Filter expression")
    sort: Optional[str] = Field(None, description="Sort expression")
    skip_total: Optional[bool] = Field(None, alias="skipTotal", description="Skip total count for performance")


class GetFullListArgs(RecordQueryArgs):
    batch: int = Field(500, ge=1, description="Batch size (default: 500)")
    filter: Optional[str] = Field(None, description="Filter expression")
    sort: Optional[str] = Field(None, description="Sort expression")


class GetFirstListItemArgs(RecordQueryArgs):
    filter: str = Field(..., description="Filter expression")


class GetRecordArgs(RecordQueryArgs):
    id: str = Field(..., description="Record ID")


class CreateRecordArgs(RecordQueryArgs):
    data: Dict[str, Any] = Field(..., description="Record data")


class UpdateRecordArgs(RecordQueryArgs):
    id: str = Field(..., description="Record ID")
    data: Dict[str, Any] = Field(..., description="Update data")


class DeleteRecordArgs(ToolArguments):
    collection: str = Field(..., description="Collection name")
    id: str = Field(..., description="Record ID")


# Batch


class BatchWriteItem(BaseModel):
    collection: str
    data: Dict[str, Any]


class BatchUpdateItem(BaseModel):
    collection: str
    id: str
    data: Dict[str, Any]


class BatchDeleteItem(BaseModel):
    collection: str
    id: str


class BatchCreateArgs(ToolArguments):
    requests: List[BatchWriteItem] = Field(..., description="Array of create requests")


class BatchUpdateArgs(ToolArguments):
    requests: List[BatchUpdateItem] = Field(..., description="Array of update requests")


class BatchDeleteArgs(ToolArguments):
    requests: List[BatchDeleteItem] = Field(..., description="Array of delete requests")


class BatchUpsertArgs(ToolArguments):
    requests: List[BatchWriteItem] = Field(
        ..., description="Array of upsert requests (data.id selects the record to update)"
    )


# Authentication


class AuthCollectionArgs(ToolArguments):
    collection: str = Field(..., description="Auth collection name")


class AuthWithPasswordArgs(ToolArguments):
    collection: str = Field("users", description="Auth collection name (default: users)")
    identity: str = Field(..., description="Email or username")
    password: str = Field(..., description="Password")


class AuthWithOAuth2Args(AuthCollectionArgs):
    provider: str = Field(..., description="OAuth2 provider name")
    redirect_url: Optional[str] = Field(None, alias="redirectURL", description="Redirect URL after auth")
    create_data: Optional[Dict[str, Any]] = Field(
        None, alias="createData", description="Optional data for new users"
    )


class EmailArgs(AuthCollectionArgs):
    email: str = Field(..., description="User email")


class AuthWithOTPArgs(AuthCollectionArgs):
    otp_id: str = Field(..., alias="otpId", description="OTP ID from request_otp")
    password: str = Field(..., description="OTP code")


class ConfirmPasswordResetArgs(AuthCollectionArgs):
    token: str = Field(..., description="Reset token")
    password: str = Field(..., description="New password")
    password_confirm: str = Field(..., alias="passwordConfirm", description="Password confirmation")


class ConfirmVerificationArgs(AuthCollectionArgs):
    token: str = Field(..., description="Verification token")


class RequestEmailChangeArgs(AuthCollectionArgs):
    new_email: str = Field(..., alias="newEmail", description="New email address")


class ConfirmEmailChangeArgs(AuthCollectionArgs):
    token: str = Field(..., description="Email change token")
    password: str = Field(..., description="User password")


# Files, logs, crons, settings


class GetFileUrlArgs(ToolArguments):
    collection: str = Field(..., description="Collection name")
    record_id: str = Field(..., alias="recordId", description="Record ID")
    filename: str = Field(..., description="File name")
    thumb: Optional[str] = Field(None, description="Thumbnail size (e.g., 100x100)")
    download: bool = Field(False, description="Force download")


class ListLogsArgs(ToolArguments):
    page: int = Field(1, ge=1, description="Page number")
    per_page: int = Field(30, ge=1, alias="perPage", description="Logs per page")
    filter: Optional[str] = Field(None, description="Filter expression")
    sort: Optional[str] = Field(None, description="Sort expression")


class GetLogArgs(ToolArguments):
    id: str = Field(..., description="Log ID")


class GetLogStatsArgs(ToolArguments):
    filter: Optional[str] = Field(None, description="Filter expression")


class RunCronJobArgs(ToolArguments):
    job_id: str = Field(..., alias="jobId", description="Cron job ID")


class UpdateSettingsArgs(ToolArguments):
    settings: Dict[str, Any] = Field(..., description="Settings to update")


# Backups


class CreateBackupArgs(ToolArguments):
    name: Optional[str] = Field(None, description="Backup name (generated by PocketBase when omitted)")


class BackupKeyArgs(ToolArguments):
    key: str = Field(..., description="Backup key")


class UploadBackupArgs(BackupKeyArgs):
    path: Optional[str] = Field(None, description="Local path of the zip archive (default: ./<key>)")


# Hooks


class HooksDirArgs(ToolArguments):
    hooks_dir: Optional[str] = Field(
        None, alias="hooksDir", description="Hooks directory (default: ./pb_hooks)"
    )


class HookFileArgs(HooksDirArgs):
    filename: str = Field(..., description="Hook file name")


class CreateHookArgs(HookFileArgs):
    filename: str = Field(..., description="Hook file name, must end with .pb.js")
    content: str = Field(..., description="Hook file content")


class CreateHookTemplateArgs(HooksDirArgs):
    type: str = Field(
        ...,
        description="Template type",
        json_schema_extra={"enum": list(HOOK_TEMPLATES)},
    )
    collection: Optional[str] = Field(
        None, description="Collection name (or route group for custom-route)"
    )
