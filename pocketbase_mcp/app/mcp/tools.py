from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..exceptions import (
    ErrorKind,
    InvalidArgumentsError,
    LocalFileNotFoundError,
    OAuth2ProviderNotFoundError,
    ToolError,
    ToolNotFoundError,
)
from ..hook_store import HookStore, resolve_hooks_dir
from ..pocketbase_client import PocketBaseAPIError, PocketBaseClient
from ..template_loader import render_hook_template
from .arguments import (
    AuthCollectionArgs,
    AuthWithOAuth2Args,
    AuthWithOTPArgs,
    AuthWithPasswordArgs,
    BackupKeyArgs,
    BatchCreateArgs,
    BatchDeleteArgs,
    BatchUpdateArgs,
    BatchUpsertArgs,
    CollectionRefArgs,
    ConfirmEmailChangeArgs,
    ConfirmPasswordResetArgs,
    ConfirmVerificationArgs,
    CreateBackupArgs,
    CreateCollectionArgs,
    CreateHookArgs,
    CreateHookTemplateArgs,
    CreateRecordArgs,
    DeleteRecordArgs,
    EmailArgs,
    GetFileUrlArgs,
    GetFirstListItemArgs,
    GetFullListArgs,
    GetLogArgs,
    GetLogStatsArgs,
    GetRecordArgs,
    HookFileArgs,
    HooksDirArgs,
    ImportCollectionsArgs,
    ListCollectionsArgs,
    ListLogsArgs,
    ListRecordsArgs,
    NoArguments,
    RequestEmailChangeArgs,
    RunCronJobArgs,
    ToolArguments,
    UpdateCollectionArgs,
    UpdateRecordArgs,
    UpdateSettingsArgs,
    UploadBackupArgs,
)
from .schemas import ToolCallRequest, ToolCallResponse, ToolDescriptor

ToolHandler = Callable[[Any], Awaitable[str]]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    arguments: Type[ToolArguments]
    handler: ToolHandler


def _json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def _auth_payload(data: Dict[str, Any]) -> str:
    return _json({"token": data.get("token"), "record": data.get("record")})


def _format_validation_error(tool: str, exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
        problems.append(f"{location}: {error.get('msg')}")
    return f"Invalid arguments for {tool}: " + "; ".join(problems)


class ToolRegistry:
    """Tool catalog and dispatcher.

    Descriptors and handlers come from the same table, so every listed tool
    is callable and every handler is listed. :meth:`call` never raises: all
    failures come back as an ``Error: ...`` text response.
    """

    def __init__(self, client: PocketBaseClient, hooks_dir: Optional[str] = None) -> None:
        self._client = client
        self._hooks_dir = hooks_dir
        self._registry: Dict[str, ToolSpec] = {spec.name: spec for spec in self._build_specs()}
        self._descriptors: Dict[str, ToolDescriptor] = {
            name: ToolDescriptor(
                name=name,
                description=spec.description,
                inputSchema=spec.arguments.input_schema(),
            )
            for name, spec in self._registry.items()
        }

    def _build_specs(self) -> List[ToolSpec]:
        return [
            # Collections
            ToolSpec("list_collections", "List all collections with pagination and filtering", ListCollectionsArgs, self._list_collections),
            ToolSpec("get_collection", "Get a specific collection by ID or name", CollectionRefArgs, self._get_collection),
            ToolSpec("create_collection", "Create a new collection", CreateCollectionArgs, self._create_collection),
            ToolSpec("update_collection", "Update an existing collection", UpdateCollectionArgs, self._update_collection),
            ToolSpec("delete_collection", "Delete a collection", CollectionRefArgs, self._delete_collection),
            ToolSpec("import_collections", "Import multiple collections at once", ImportCollectionsArgs, self._import_collections),
            # Records
            ToolSpec("list_records", "List records from a collection with pagination", ListRecordsArgs, self._list_records),
            ToolSpec("get_full_list", "Get all records from a collection without pagination", GetFullListArgs, self._get_full_list),
            ToolSpec("get_first_list_item", "Get the first record matching a filter", GetFirstListItemArgs, self._get_first_list_item),
            ToolSpec("get_record", "Get a specific record by ID", GetRecordArgs, self._get_record),
            ToolSpec("create_record", "Create a new record in a collection", CreateRecordArgs, self._create_record),
            ToolSpec("update_record", "Update an existing record", UpdateRecordArgs, self._update_record),
            ToolSpec("delete_record", "Delete a record", DeleteRecordArgs, self._delete_record),
            # Batch
            ToolSpec("batch_create", "Create multiple records in a single transaction", BatchCreateArgs, self._batch_create),
            ToolSpec("batch_update", "Update multiple records in a single transaction", BatchUpdateArgs, self._batch_update),
            ToolSpec("batch_delete", "Delete multiple records in a single transaction", BatchDeleteArgs, self._batch_delete),
            ToolSpec("batch_upsert", "Upsert (create or update) multiple records in a single transaction", BatchUpsertArgs, self._batch_upsert),
            # Authentication
            ToolSpec("list_auth_methods", "Get available authentication methods for a collection", AuthCollectionArgs, self._list_auth_methods),
            ToolSpec("auth_with_password", "Authenticate with email/username and password", AuthWithPasswordArgs, self._auth_with_password),
            ToolSpec("auth_with_oauth2", "Get OAuth2 authentication URL", AuthWithOAuth2Args, self._auth_with_oauth2),
            ToolSpec("auth_refresh", "Refresh authentication token", AuthCollectionArgs, self._auth_refresh),
            ToolSpec("request_otp", "Request OTP for email authentication", EmailArgs, self._request_otp),
            ToolSpec("auth_with_otp", "Authenticate with OTP", AuthWithOTPArgs, self._auth_with_otp),
            ToolSpec("request_password_reset", "Send password reset email", EmailArgs, self._request_password_reset),
            ToolSpec("confirm_password_reset", "Confirm password reset with token", ConfirmPasswordResetArgs, self._confirm_password_reset),
            ToolSpec("request_verification", "Send verification email", EmailArgs, self._request_verification),
            ToolSpec("confirm_verification", "Confirm email verification", ConfirmVerificationArgs, self._confirm_verification),
            ToolSpec("request_email_change", "Request email change", RequestEmailChangeArgs, self._request_email_change),
            ToolSpec("confirm_email_change", "Confirm email change", ConfirmEmailChangeArgs, self._confirm_email_change),
            # Files
            ToolSpec("get_file_url", "Generate URL for accessing a file", GetFileUrlArgs, self._get_file_url),
            ToolSpec("get_file_token", "Get private file access token", NoArguments, self._get_file_token),
            # Logs
            ToolSpec("list_logs", "List system logs", ListLogsArgs, self._list_logs),
            ToolSpec("get_log", "Get a specific log entry", GetLogArgs, self._get_log),
            ToolSpec("get_log_stats", "Get log statistics", GetLogStatsArgs, self._get_log_stats),
            # Crons
            ToolSpec("list_cron_jobs", "List all cron jobs", NoArguments, self._list_cron_jobs),
            ToolSpec("run_cron_job", "Manually run a cron job", RunCronJobArgs, self._run_cron_job),
            # Settings and health
            ToolSpec("get_health", "Check PocketBase health status", NoArguments, self._get_health),
            ToolSpec("get_settings", "Get PocketBase settings (requires superuser auth)", NoArguments, self._get_settings),
            ToolSpec("update_settings", "Update PocketBase settings (requires superuser auth)", UpdateSettingsArgs, self._update_settings),
            # Backups
            ToolSpec("create_backup", "Create a backup of PocketBase data (requires superuser auth)", CreateBackupArgs, self._create_backup),
            ToolSpec("list_backups", "List available backups (requires superuser auth)", NoArguments, self._list_backups),
            ToolSpec("upload_backup", "Upload a local backup archive (requires superuser auth)", UploadBackupArgs, self._upload_backup),
            ToolSpec("download_backup", "Get a download URL for a backup (requires superuser auth)", BackupKeyArgs, self._download_backup),
            ToolSpec("delete_backup", "Delete a backup file (requires superuser auth)", BackupKeyArgs, self._delete_backup),
            ToolSpec("restore_backup", "Restore from a backup (requires superuser auth)", BackupKeyArgs, self._restore_backup),
            # Hooks
            ToolSpec("list_hooks", "List JavaScript hook files in the pb_hooks directory", HooksDirArgs, self._list_hooks),
            ToolSpec("read_hook", "Read the contents of a hook file", HookFileArgs, self._read_hook),
            ToolSpec("create_hook", "Create or update a JavaScript hook file", CreateHookArgs, self._create_hook),
            ToolSpec("delete_hook", "Delete a hook file", HookFileArgs, self._delete_hook),
            ToolSpec("create_hook_template", "Generate hook templates for common patterns", CreateHookTemplateArgs, self._create_hook_template),
        ]

    def descriptors(self) -> List[ToolDescriptor]:
        return list(self._descriptors.values())

    def handler_names(self) -> List[str]:
        return list(self._registry)

    async def call(self, request: ToolCallRequest) -> ToolCallResponse:
        tool = request.tool
        try:
            spec = self._registry.get(tool)
            if spec is None:
                raise ToolNotFoundError(tool)
            try:
                arguments = spec.arguments.model_validate(request.params or {})
            except ValidationError as exc:
                raise InvalidArgumentsError(_format_validation_error(tool, exc)) from exc
            logger.debug("Calling tool %s", tool)
            text = await spec.handler(arguments)
        except ToolError as exc:
            return self._failure(tool, exc.kind, exc.message)
        except PocketBaseAPIError as exc:
            return self._failure(tool, ErrorKind.BACKEND, str(exc))
        except httpx.HTTPError as exc:
            return self._failure(tool, ErrorKind.BACKEND, str(exc) or exc.__class__.__name__)
        except FileNotFoundError as exc:
            return self._failure(tool, ErrorKind.NOT_FOUND, f"File {exc.filename} not found")
        except OSError as exc:
            return self._failure(tool, ErrorKind.FILESYSTEM, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error in tool %s", tool)
            return self._failure(tool, ErrorKind.INTERNAL, str(exc) or exc.__class__.__name__)
        return ToolCallResponse.text(tool, text)

    @staticmethod
    def _failure(tool: str, kind: ErrorKind, message: str) -> ToolCallResponse:
        logger.info("[%s] failed (%s): %s", tool, kind.value, message)
        return ToolCallResponse.error(tool, kind, message)

    # Collections

    async def _list_collections(self, args: ListCollectionsArgs) -> str:
        result = await self._client.collections.get_list(
            args.page, args.per_page, args.query("filter", "sort", "skip_total")
        )
        return _json(result)

    async def _get_collection(self, args: CollectionRefArgs) -> str:
        return _json(await self._client.collections.get_one(args.id_or_name))

    async def _create_collection(self, args: CreateCollectionArgs) -> str:
        return _json(await self._client.collections.create(args.payload()))

    async def _update_collection(self, args: UpdateCollectionArgs) -> str:
        return _json(await self._client.collections.update(args.id_or_name, args.data))

    async def _delete_collection(self, args: CollectionRefArgs) -> str:
        await self._client.collections.delete(args.id_or_name)
        return f"Collection {args.id_or_name} deleted successfully"

    async def _import_collections(self, args: ImportCollectionsArgs) -> str:
        await self._client.collections.import_collections(args.collections, args.delete_missing)
        return f"Successfully imported {len(args.collections)} collections"

    # Records

    async def _list_records(self, args: ListRecordsArgs) -> str:
        result = await self._client.collection(args.collection).get_list(
            args.page,
            args.per_page,
            args.query("filter", "sort", "expand", "fields", "skip_total"),
        )
        return _json(result)

    async def _get_full_list(self, args: GetFullListArgs) -> str:
        records = await self._client.collection(args.collection).get_full_list(
            args.batch, args.query("filter", "sort", "expand", "fields")
        )
        return _json(records)

    async def _get_first_list_item(self, args: GetFirstListItemArgs) -> str:
        record = await self._client.collection(args.collection).get_first_list_item(
            args.filter, args.query("expand", "fields")
        )
        return _json(record)

    async def _get_record(self, args: GetRecordArgs) -> str:
        record = await self._client.collection(args.collection).get_one(args.id, args.query("expand", "fields"))
        return _json(record)

    async def _create_record(self, args: CreateRecordArgs) -> str:
        record = await self._client.collection(args.collection).create(args.data, args.query("expand", "fields"))
        return _json(record)

    async def _update_record(self, args: UpdateRecordArgs) -> str:
        record = await self._client.collection(args.collection).update(
            args.id, args.data, args.query("expand", "fields")
        )
        return _json(record)

    async def _delete_record(self, args: DeleteRecordArgs) -> str:
        await self._client.collection(args.collection).delete(args.id)
        return f"Record {args.id} deleted from {args.collection}"

    # Batch

    async def _batch_create(self, args: BatchCreateArgs) -> str:
        batch = self._client.create_batch()
        for item in args.requests:
            batch.collection(item.collection).create(item.data)
        return _json(await batch.send())

    async def _batch_update(self, args: BatchUpdateArgs) -> str:
        batch = self._client.create_batch()
        for item in args.requests:
            batch.collection(item.collection).update(item.id, item.data)
        return _json(await batch.send())

    async def _batch_delete(self, args: BatchDeleteArgs) -> str:
        batch = self._client.create_batch()
        for item in args.requests:
            batch.collection(item.collection).delete(item.id)
        return _json(await batch.send())

    async def _batch_upsert(self, args: BatchUpsertArgs) -> str:
        batch = self._client.create_batch()
        for item in args.requests:
            batch.collection(item.collection).upsert(item.data)
        return _json(await batch.send())

    # Authentication

    async def _list_auth_methods(self, args: AuthCollectionArgs) -> str:
        return _json(await self._client.collection(args.collection).list_auth_methods())

    async def _auth_with_password(self, args: AuthWithPasswordArgs) -> str:
        data = await self._client.collection(args.collection).auth_with_password(args.identity, args.password)
        return _auth_payload(data)

    async def _auth_with_oauth2(self, args: AuthWithOAuth2Args) -> str:
        methods = await self._client.collection(args.collection).list_auth_methods() or {}
        providers = (methods.get("oauth2") or {}).get("providers") or []
        provider = next((item for item in providers if item.get("name") == args.provider), None)
        if provider is None:
            raise OAuth2ProviderNotFoundError(args.provider)

        auth_url = provider.get("authURL", "")
        if args.redirect_url:
            auth_url += quote(args.redirect_url, safe="")
        payload: Dict[str, Any] = {
            "authURL": auth_url,
            "state": provider.get("state"),
            "codeVerifier": provider.get("codeVerifier"),
            "codeChallenge": provider.get("codeChallenge"),
            "codeChallengeMethod": provider.get("codeChallengeMethod"),
        }
        if args.create_data:
            payload["createData"] = args.create_data
        return _json(payload)

    async def _auth_refresh(self, args: AuthCollectionArgs) -> str:
        return _auth_payload(await self._client.collection(args.collection).auth_refresh())

    async def _request_otp(self, args: EmailArgs) -> str:
        return _json(await self._client.collection(args.collection).request_otp(args.email))

    async def _auth_with_otp(self, args: AuthWithOTPArgs) -> str:
        data = await self._client.collection(args.collection).auth_with_otp(args.otp_id, args.password)
        return _auth_payload(data)

    async def _request_password_reset(self, args: EmailArgs) -> str:
        await self._client.collection(args.collection).request_password_reset(args.email)
        return f"Password reset email sent to {args.email}"

    async def _confirm_password_reset(self, args: ConfirmPasswordResetArgs) -> str:
        await self._client.collection(args.collection).confirm_password_reset(
            args.token, args.password, args.password_confirm
        )
        return "Password reset successfully"

    async def _request_verification(self, args: EmailArgs) -> str:
        await self._client.collection(args.collection).request_verification(args.email)
        return f"Verification email sent to {args.email}"

    async def _confirm_verification(self, args: ConfirmVerificationArgs) -> str:
        await self._client.collection(args.collection).confirm_verification(args.token)
        return "Email verified successfully"

    async def _request_email_change(self, args: RequestEmailChangeArgs) -> str:
        await self._client.collection(args.collection).request_email_change(args.new_email)
        return f"Email change requested. Confirmation sent to {args.new_email}"

    async def _confirm_email_change(self, args: ConfirmEmailChangeArgs) -> str:
        await self._client.collection(args.collection).confirm_email_change(args.token, args.password)
        return "Email changed successfully"

    # Files

    async def _get_file_url(self, args: GetFileUrlArgs) -> str:
        return self._client.files.get_url(
            args.collection,
            args.record_id,
            args.filename,
            thumb=args.thumb,
            download=args.download,
        )

    async def _get_file_token(self, args: NoArguments) -> str:
        return _json({"token": await self._client.files.get_token()})

    # Logs and crons

    async def _list_logs(self, args: ListLogsArgs) -> str:
        result = await self._client.logs.get_list(args.page, args.per_page, args.query("filter", "sort"))
        return _json(result)

    async def _get_log(self, args: GetLogArgs) -> str:
        return _json(await self._client.logs.get_one(args.id))

    async def _get_log_stats(self, args: GetLogStatsArgs) -> str:
        return _json(await self._client.logs.get_stats(args.query("filter")))

    async def _list_cron_jobs(self, args: NoArguments) -> str:
        return _json(await self._client.crons.get_full_list())

    async def _run_cron_job(self, args: RunCronJobArgs) -> str:
        await self._client.crons.run(args.job_id)
        return f"Cron job {args.job_id} executed successfully"

    # Settings and health

    async def _get_health(self, args: NoArguments) -> str:
        return _json(await self._client.health())

    async def _get_settings(self, args: NoArguments) -> str:
        return _json(await self._client.settings.get_all())

    async def _update_settings(self, args: UpdateSettingsArgs) -> str:
        return _json(await self._client.settings.update(args.settings))

    # Backups

    async def _create_backup(self, args: CreateBackupArgs) -> str:
        await self._client.backups.create(args.name)
        if args.name:
            return f"Backup {args.name} created successfully"
        return "Backup created successfully"

    async def _list_backups(self, args: NoArguments) -> str:
        return _json(await self._client.backups.get_full_list())

    async def _upload_backup(self, args: UploadBackupArgs) -> str:
        path = Path(args.path).expanduser() if args.path else Path.cwd() / args.key
        if not path.is_file():
            raise LocalFileNotFoundError(str(path))
        await self._client.backups.upload(path, args.key)
        return f"Backup {args.key} uploaded successfully"

    async def _download_backup(self, args: BackupKeyArgs) -> str:
        token = await self._client.files.get_token()
        return _json({"downloadURL": self._client.backups.get_download_url(token, args.key)})

    async def _delete_backup(self, args: BackupKeyArgs) -> str:
        await self._client.backups.delete(args.key)
        return f"Backup {args.key} deleted successfully"

    async def _restore_backup(self, args: BackupKeyArgs) -> str:
        await self._client.backups.restore(args.key)
        return f"Backup {args.key} restored successfully"

    # Hooks

    def _hook_store(self, args: HooksDirArgs) -> HookStore:
        return HookStore(resolve_hooks_dir(args.hooks_dir, self._hooks_dir))

    async def _list_hooks(self, args: HooksDirArgs) -> str:
        return _json(await self._hook_store(args).list())

    async def _read_hook(self, args: HookFileArgs) -> str:
        return await self._hook_store(args).read(args.filename)

    async def _create_hook(self, args: CreateHookArgs) -> str:
        await self._hook_store(args).write(args.filename, args.content)
        return f"Hook {args.filename} created/updated successfully"

    async def _delete_hook(self, args: HookFileArgs) -> str:
        await self._hook_store(args).delete(args.filename)
        return f"Hook {args.filename} deleted successfully"

    async def _create_hook_template(self, args: CreateHookTemplateArgs) -> str:
        rendered = render_hook_template(args.type, args.collection)
        await self._hook_store(args).write(rendered.filename, rendered.content)
        return f"Hook template '{rendered.filename}' created with {args.type} template\n\n{rendered.content}"
