#!/usr/bin/env python3
"""
Script to grant or revoke an API permission (app role) for a managed identity.

This script uses Microsoft Graph API (v1.0) to:
1. Resolve the managed identity's service principal by display name
2. Resolve the target API's service principal by display name or app ID
3. Find the requested application permission (app role) on the target API
4. Grant, revoke or reset (revoke then grant) the app role assignment

Requirements:
    pip install azure-identity msgraph-sdk httpx

Authentication:
    Uses DefaultAzureCredential which supports multiple authentication methods:
    - Azure CLI (az login)
    - Environment variables
    - Managed Identity
    - Visual Studio Code credentials
    Pass --interactive to sign in through the browser instead.

The signed-in account needs AppRoleAssignment.ReadWrite.All and
Application.Read.All (or Directory.Read.All).
"""

import asyncio
import argparse
import json
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

try:
    from azure.core.exceptions import ClientAuthenticationError
    from azure.identity import DefaultAzureCredential, InteractiveBrowserCredential
    from kiota_abstractions.api_error import APIError
    from msgraph import GraphServiceClient
    from msgraph.generated.service_principals.service_principals_request_builder import (
        ServicePrincipalsRequestBuilder,
    )
    import httpx
except ImportError:
    print("Required packages not installed. Please run:")
    print("  pip install azure-identity msgraph-sdk httpx")
    sys.exit(1)


logger = logging.getLogger("msi-api-permission")

GRAPH_ENDPOINT = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
HTTP_TIMEOUT = 30.0

APPLICATION_MEMBER_TYPE = "Application"

# Well-known API service principal App IDs
WELL_KNOWN_APIS = {
    "microsoft-graph": "00000003-0000-0000-c000-000000000000",
    "graph": "00000003-0000-0000-c000-000000000000",
    "sharepoint": "00000003-0000-0ff1-ce00-000000000000",
    "exchange": "00000002-0000-0ff1-ce00-000000000000",
    "azure-management": "797f4846-ba00-4fd7-ba43-dac1f8f63013",
    "key-vault": "cfa8b339-82a2-471a-a3c9-0fc0be7a4093",
    "storage": "e406a681-f3d4-42a8-90b6-c2b029497af1",
}

SERVICE_PRINCIPAL_FIELDS = ["id", "displayName", "appId", "appRoles"]


# ──────────────────────────────────────────────
# Errors
# ──────────────────────────────────────────────


class PermissionAssignmentError(Exception):
    """Base class for failures while resolving or applying an app role assignment."""

    kind = "Error"

    def __init__(self, message: str, details: str = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        result = {"kind": self.kind, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(PermissionAssignmentError):
    kind = "ValidationError"


class NotFoundError(PermissionAssignmentError):
    kind = "NotFound"


class AmbiguousResultError(PermissionAssignmentError):
    kind = "AmbiguousResult"


class RoleNotFoundError(PermissionAssignmentError):
    kind = "RoleNotFound"

    def __init__(self, message: str, available_permissions: list = None):
        super().__init__(message)
        self.available_permissions = available_permissions or []

    def to_dict(self) -> dict:
        result = super().to_dict()
        if self.available_permissions:
            result["available_permissions"] = self.available_permissions
        return result


class RemoteCallError(PermissionAssignmentError):
    """Graph rejected a call, or the call never completed."""

    kind = "RemoteCallError"

    def __init__(self, message: str, status_code: int = None, details: str = None):
        super().__init__(message, details=details)
        self.status_code = status_code

    def to_dict(self) -> dict:
        result = super().to_dict()
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


# ──────────────────────────────────────────────
# Directory records
# ──────────────────────────────────────────────


def _required(value, record: str, name: str) -> str:
    if value is None or value == "":
        raise RemoteCallError(f"Unexpected {record} in directory response: missing '{name}'")
    return str(value)


def _optional(value) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class AppRole:
    """A permission declared on an application registration."""

    id: str
    value: str
    allowed_member_types: frozenset = frozenset()
    display_name: str = ""
    description: str = ""
    is_enabled: bool = True

    @property
    def is_application_assignable(self) -> bool:
        return APPLICATION_MEMBER_TYPE in self.allowed_member_types

    @classmethod
    def from_graph(cls, role) -> "AppRole":
        return cls(
            id=_required(getattr(role, "id", None), "appRole", "id"),
            value=_optional(getattr(role, "value", None)),
            allowed_member_types=frozenset(getattr(role, "allowed_member_types", None) or []),
            display_name=_optional(getattr(role, "display_name", None)),
            description=_optional(getattr(role, "description", None)),
            is_enabled=getattr(role, "is_enabled", None) is not False,
        )


@dataclass(frozen=True)
class ServicePrincipal:
    id: str
    display_name: str
    app_id: str
    app_roles: tuple = ()

    @classmethod
    def from_graph(cls, sp) -> "ServicePrincipal":
        return cls(
            id=_required(getattr(sp, "id", None), "servicePrincipal", "id"),
            display_name=_optional(getattr(sp, "display_name", None)),
            app_id=_optional(getattr(sp, "app_id", None)),
            app_roles=tuple(
                AppRole.from_graph(role) for role in (getattr(sp, "app_roles", None) or [])
            ),
        )

    def to_dict(self) -> dict:
        return {"id": self.id, "displayName": self.display_name, "appId": self.app_id}


@dataclass(frozen=True)
class AppRoleAssignment:
    """
    Directory record granting an app role on a resource to a principal.

    service_principal_id is the principal the record was read from or
    created under; for a managed identity it equals principal_id.
    """

    id: str
    service_principal_id: str
    principal_id: str
    resource_id: str
    app_role_id: str
    resource_display_name: str = ""

    @classmethod
    def from_graph(cls, assignment, service_principal_id: str) -> "AppRoleAssignment":
        return cls(
            id=_required(getattr(assignment, "id", None), "appRoleAssignment", "id"),
            service_principal_id=service_principal_id,
            principal_id=_optional(getattr(assignment, "principal_id", None)),
            resource_id=_optional(getattr(assignment, "resource_id", None)),
            app_role_id=_optional(getattr(assignment, "app_role_id", None)),
            resource_display_name=_optional(getattr(assignment, "resource_display_name", None)),
        )

    @classmethod
    def from_json(cls, data, service_principal_id: str) -> "AppRoleAssignment":
        if not isinstance(data, dict):
            raise RemoteCallError("Unexpected appRoleAssignment in directory response: not an object")
        return cls(
            id=_required(data.get("id"), "appRoleAssignment", "id"),
            service_principal_id=service_principal_id,
            principal_id=_optional(data.get("principalId")),
            resource_id=_optional(data.get("resourceId")),
            app_role_id=_optional(data.get("appRoleId")),
            resource_display_name=_optional(data.get("resourceDisplayName")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "servicePrincipalId": self.service_principal_id,
            "principalId": self.principal_id,
            "resourceId": self.resource_id,
            "appRoleId": self.app_role_id,
        }


# ──────────────────────────────────────────────
# Directory client
# ──────────────────────────────────────────────


def _describe_api_error(exc) -> str:
    error = getattr(exc, "error", None)
    if error is not None and getattr(error, "message", None):
        return error.message
    return getattr(exc, "message", None) or str(exc) or exc.__class__.__name__


def _describe_response(response) -> str:
    try:
        error_data = response.json() if response.text else {}
    except ValueError:
        error_data = {}
    if isinstance(error_data, dict) and isinstance(error_data.get("error"), dict):
        message = error_data["error"].get("message")
        if message:
            return message
    return response.text[:200]


class GraphDirectoryClient:
    """
    Authenticated Microsoft Graph client for service principal lookups and
    app role assignment changes.

    Reads go through the msgraph-sdk request builders. The two mutations are
    plain REST calls with httpx.
    """

    def __init__(self, credential, graph_client=None, transport=None):
        """
        Args:
            credential: azure-identity credential used for every Graph call
            graph_client: Pre-built GraphServiceClient (built from the credential if omitted)
            transport: Optional httpx transport for the mutation calls
        """
        self.credential = credential
        self.client = graph_client or GraphServiceClient(
            credentials=credential,
            scopes=GRAPH_SCOPES,
        )
        self._transport = transport
        self._token_cache = {}

    def _get_token(self, scope: str) -> str:
        """Get an access token, reusing a cached one until 5 minutes before expiry."""
        if scope in self._token_cache:
            cached_token, expires_on = self._token_cache[scope]
            if time.time() < expires_on - 300:
                return cached_token

        try:
            token = self.credential.get_token(scope)
        except ClientAuthenticationError as e:
            raise RemoteCallError(f"Authentication failed: {e.message}") from e
        self._token_cache[scope] = (token.token, token.expires_on)
        return token.token

    def _headers(self) -> dict:
        token = self._get_token(GRAPH_SCOPES[0])
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    def _http(self):
        return httpx.AsyncClient(http2=False, timeout=HTTP_TIMEOUT, transport=self._transport)

    async def find_service_principals(self, filter_expression: str) -> list:
        """
        Query service principals matching an OData filter.

        Args:
            filter_expression: OData $filter, e.g. "displayName eq 'LogicApp1'"

        Returns:
            List of ServicePrincipal records (all pages)
        """
        logger.debug("Looking up service principals: %s", filter_expression)
        query_params = ServicePrincipalsRequestBuilder.ServicePrincipalsRequestBuilderGetQueryParameters(
            filter=filter_expression,
            select=SERVICE_PRINCIPAL_FIELDS,
        )
        request_config = ServicePrincipalsRequestBuilder.ServicePrincipalsRequestBuilderGetRequestConfiguration(
            query_parameters=query_params,
        )

        principals = []
        try:
            result = await self.client.service_principals.get(
                request_configuration=request_config
            )
            while result:
                principals.extend(ServicePrincipal.from_graph(sp) for sp in (result.value or []))
                if not result.odata_next_link:
                    break
                result = await self.client.service_principals.with_url(
                    result.odata_next_link
                ).get()
        except APIError as e:
            raise RemoteCallError(
                f"Service principal lookup failed: {_describe_api_error(e)}",
                status_code=getattr(e, "response_status_code", None),
            ) from e
        except ClientAuthenticationError as e:
            raise RemoteCallError(f"Authentication failed: {e.message}") from e
        except httpx.HTTPError as e:
            raise RemoteCallError(f"Exception looking up service principals: {e}") from e

        return principals

    async def list_app_role_assignments(self, service_principal_id: str) -> list:
        """List app role assignments granted TO a service principal (all pages)."""
        logger.debug("Listing app role assignments for %s", service_principal_id)
        builder = self.client.service_principals.by_service_principal_id(
            service_principal_id
        ).app_role_assignments

        assignments = []
        try:
            result = await builder.get()
            while result:
                assignments.extend(
                    AppRoleAssignment.from_graph(a, service_principal_id)
                    for a in (result.value or [])
                )
                if not result.odata_next_link:
                    break
                result = await builder.with_url(result.odata_next_link).get()
        except APIError as e:
            raise RemoteCallError(
                f"Failed to list app role assignments: {_describe_api_error(e)}",
                status_code=getattr(e, "response_status_code", None),
            ) from e
        except ClientAuthenticationError as e:
            raise RemoteCallError(f"Authentication failed: {e.message}") from e
        except httpx.HTTPError as e:
            raise RemoteCallError(f"Exception listing app role assignments: {e}") from e

        return assignments

    async def create_app_role_assignment(
        self,
        service_principal_id: str,
        principal_id: str,
        resource_id: str,
        app_role_id: str,
    ) -> AppRoleAssignment:
        """Create an app role assignment under service_principal_id."""
        assignment_body = {
            "principalId": principal_id,
            "resourceId": resource_id,
            "appRoleId": app_role_id,
        }
        url = f"{GRAPH_ENDPOINT}/servicePrincipals/{service_principal_id}/appRoleAssignments"
        headers = self._headers()

        try:
            async with self._http() as client:
                response = await client.post(url, headers=headers, json=assignment_body)
        except httpx.HTTPError as e:
            raise RemoteCallError(f"Exception granting permission: {e}") from e

        if response.status_code not in (200, 201):
            raise RemoteCallError(
                f"Failed to grant permission: {response.status_code}",
                status_code=response.status_code,
                details=_describe_response(response),
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteCallError("Unexpected appRoleAssignment in directory response: not JSON") from e
        return AppRoleAssignment.from_json(data, service_principal_id)

    async def delete_app_role_assignment(self, service_principal_id: str, assignment_id: str) -> None:
        """Delete an app role assignment by its ID."""
        url = f"{GRAPH_ENDPOINT}/servicePrincipals/{service_principal_id}/appRoleAssignments/{assignment_id}"
        headers = self._headers()

        try:
            async with self._http() as client:
                response = await client.delete(url, headers=headers)
        except httpx.HTTPError as e:
            raise RemoteCallError(f"Exception revoking permission: {e}") from e

        if response.status_code != 204:
            raise RemoteCallError(
                f"Failed to revoke: {response.status_code}",
                status_code=response.status_code,
                details=_describe_response(response),
            )


# ──────────────────────────────────────────────
# Permission assigner
# ──────────────────────────────────────────────


class Action(str, Enum):
    GRANT = "grant"
    REVOKE = "revoke"
    RESET = "reset"
    LIST = "list"


class Status(str, Enum):
    GRANTED = "granted"
    REVOKED = "revoked"
    NOTHING_TO_REVOKE = "nothing_to_revoke"
    FAILED = "failed"


@dataclass
class AssignmentRequest:
    """What the caller asked for, before anything is looked up."""

    identity_name: str
    permission_name: str = ""
    target_api_name: str = ""
    target_api_app_id: str = ""


@dataclass(frozen=True)
class ResolvedAssignment:
    identity: ServicePrincipal
    target: ServicePrincipal
    role: AppRole


@dataclass
class Outcome:
    action: Action
    status: Status
    request: AssignmentRequest
    inputs: Optional[ResolvedAssignment] = None
    assignment: Optional[AppRoleAssignment] = None
    error: Optional[PermissionAssignmentError] = None

    @property
    def ok(self) -> bool:
        return self.status != Status.FAILED

    def to_dict(self) -> dict:
        result = {
            "action": self.action.value,
            "status": self.status.value,
            "identity": self.inputs.identity.to_dict() if self.inputs else self.request.identity_name,
            "target": self.inputs.target.to_dict() if self.inputs else (
                self.request.target_api_name or self.request.target_api_app_id
            ),
            "permission": self.request.permission_name,
        }
        if self.inputs:
            result["appRoleId"] = self.inputs.role.id
        if self.assignment:
            result["assignment"] = self.assignment.to_dict()
        if self.error:
            result["error"] = self.error.to_dict()
        return result


@dataclass
class PermissionListing:
    identity: ServicePrincipal
    target: ServicePrincipal
    permissions: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "identity": self.identity.to_dict(),
            "target": self.target.to_dict(),
            "permissions": self.permissions,
        }


def _odata_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def resolve_app_id_alias(app_id: str) -> str:
    """Map a well-known API name (e.g. 'microsoft-graph') to its App ID."""
    return WELL_KNOWN_APIS.get(app_id.strip().lower(), app_id.strip())


class PermissionAssigner:
    """
    Resolves a managed identity and a target API, then grants or revokes an
    application permission between them.

    Every lookup is made fresh through the directory client handed in; nothing
    is cached between operations.
    """

    def __init__(self, client):
        self.client = client

    async def resolve_principal(self, display_name: str = None, app_id: str = None) -> ServicePrincipal:
        """
        Find exactly one service principal by display name or by app ID.

        Raises:
            ValidationError: both or neither identifier given
            NotFoundError: no match
            AmbiguousResultError: more than one match
        """
        # Display names are matched verbatim; only app IDs are trimmed.
        display_name = display_name or ""
        app_id = (app_id or "").strip()
        if bool(display_name.strip()) == bool(app_id):
            raise ValidationError("Specify exactly one of a display name or an app ID.")

        if display_name.strip():
            description = f"display name '{display_name}'"
            filter_expression = f"displayName eq {_odata_literal(display_name)}"
        else:
            description = f"app ID '{app_id}'"
            filter_expression = f"appId eq {_odata_literal(app_id)}"

        matches = await self.client.find_service_principals(filter_expression)
        if not matches:
            raise NotFoundError(f"No service principal found with {description}.")
        if len(matches) > 1:
            ids = ", ".join(sp.id for sp in matches)
            raise AmbiguousResultError(
                f"{len(matches)} service principals match {description}: {ids}"
            )
        return matches[0]

    def resolve_target_role(self, target: ServicePrincipal, permission_name: str) -> AppRole:
        """Find the application-assignable app role named permission_name on target."""
        named = [role for role in target.app_roles if role.value == permission_name]
        for role in named:
            if role.is_application_assignable:
                return role

        available = sorted(
            role.value for role in target.app_roles
            if role.value and role.is_application_assignable
        )
        if named:
            raise RoleNotFoundError(
                f"Permission '{permission_name}' on '{target.display_name}' is not "
                "assignable to applications (delegated only).",
                available_permissions=available,
            )
        raise RoleNotFoundError(
            f"Permission '{permission_name}' not found on '{target.display_name}'.",
            available_permissions=available,
        )

    def _validate(self, request: AssignmentRequest, require_permission: bool = True) -> None:
        if not (request.identity_name or "").strip():
            raise ValidationError("An identity name is required.")
        if require_permission and not (request.permission_name or "").strip():
            raise ValidationError("A permission name is required.")
        has_name = bool((request.target_api_name or "").strip())
        has_app_id = bool((request.target_api_app_id or "").strip())
        if has_name and has_app_id:
            raise ValidationError("Specify either the target API name or its app ID, not both.")
        if not has_name and not has_app_id:
            raise ValidationError("Specify the target API name or its app ID.")

    async def _resolve_principals(self, request: AssignmentRequest) -> tuple:
        identity = await self.resolve_principal(display_name=request.identity_name)
        if (request.target_api_app_id or "").strip():
            target = await self.resolve_principal(
                app_id=resolve_app_id_alias(request.target_api_app_id)
            )
        else:
            target = await self.resolve_principal(display_name=request.target_api_name)
        return identity, target

    async def resolve_assignment_inputs(self, request: AssignmentRequest) -> ResolvedAssignment:
        """
        Validate the request, then resolve identity, target API and app role.

        Validation happens before any directory call. The first failure is
        raised as-is.
        """
        self._validate(request)
        identity, target = await self._resolve_principals(request)
        role = self.resolve_target_role(target, request.permission_name.strip())
        return ResolvedAssignment(identity=identity, target=target, role=role)

    async def apply(self, inputs: ResolvedAssignment, action: Action,
                    request: AssignmentRequest = None) -> Outcome:
        """
        Grant or revoke the resolved assignment.

        Directory failures are returned as a failed Outcome rather than raised.
        """
        if action not in (Action.GRANT, Action.REVOKE):
            raise ValueError(f"apply() only handles grant and revoke, not {action.value}")
        if request is None:
            request = AssignmentRequest(
                identity_name=inputs.identity.display_name,
                permission_name=inputs.role.value,
                target_api_app_id=inputs.target.app_id,
            )
        identity, target, role = inputs.identity, inputs.target, inputs.role

        try:
            if action == Action.GRANT:
                assignment = await self.client.create_app_role_assignment(
                    identity.id, identity.id, target.id, role.id
                )
                logger.info(
                    "App role granted: identity=%s  api=%s  role=%s  assignment=%s",
                    identity.display_name, target.display_name, role.value, assignment.id,
                )
                return Outcome(action, Status.GRANTED, request, inputs, assignment=assignment)

            existing = await self.client.list_app_role_assignments(identity.id)
            matching = [
                a for a in existing
                if a.app_role_id == role.id and a.resource_id == target.id
            ]
            if not matching:
                logger.warning(
                    "Nothing to revoke: %s does not hold %s on %s",
                    identity.display_name, role.value, target.display_name,
                )
                return Outcome(action, Status.NOTHING_TO_REVOKE, request, inputs)

            assignment = matching[0]
            await self.client.delete_app_role_assignment(identity.id, assignment.id)
            logger.info(
                "App role revoked: identity=%s  api=%s  role=%s  assignment=%s",
                identity.display_name, target.display_name, role.value, assignment.id,
            )
            return Outcome(action, Status.REVOKED, request, inputs, assignment=assignment)

        except RemoteCallError as e:
            logger.error("%s of %s failed: %s", action.value.capitalize(), role.value, e.message)
            return Outcome(action, Status.FAILED, request, inputs, error=e)

    async def execute(self, request: AssignmentRequest, action: Action) -> Outcome:
        """Resolve and apply one grant or revoke; never raises PermissionAssignmentError."""
        try:
            inputs = await self.resolve_assignment_inputs(request)
        except PermissionAssignmentError as e:
            logger.error("%s: %s", e.kind, e.message)
            return Outcome(action, Status.FAILED, request, error=e)
        return await self.apply(inputs, action, request)

    async def reset(self, request: AssignmentRequest) -> list:
        """
        Revoke then grant the same permission.

        The grant runs even when the revoke failed, and each half resolves its
        inputs from the directory again.
        """
        revoked = await self.execute(request, Action.REVOKE)
        granted = await self.execute(request, Action.GRANT)
        return [revoked, granted]

    async def list_permissions(self, request: AssignmentRequest) -> PermissionListing:
        """
        List the application permissions the target API exposes, flagging the
        ones the identity already holds.
        """
        self._validate(request, require_permission=False)
        identity, target = await self._resolve_principals(request)
        held = {
            a.app_role_id for a in await self.client.list_app_role_assignments(identity.id)
            if a.resource_id == target.id
        }

        permissions = [
            {
                "id": role.id,
                "name": role.value,
                "displayName": role.display_name,
                "description": role.description,
                "granted": role.id in held,
            }
            for role in target.app_roles
            if role.is_enabled and role.is_application_assignable
        ]
        permissions.sort(key=lambda p: p["name"])
        return PermissionListing(identity=identity, target=target, permissions=permissions)


# ──────────────────────────────────────────────
# Output
# ──────────────────────────────────────────────


def format_outcome(outcome: Outcome) -> str:
    """Render one outcome as human-readable text."""
    request = outcome.request
    identity = outcome.inputs.identity.display_name if outcome.inputs else request.identity_name
    target = (
        outcome.inputs.target.display_name if outcome.inputs
        else request.target_api_name or request.target_api_app_id
    )
    permission = request.permission_name

    if outcome.status == Status.GRANTED:
        return (
            f"[OK] Granted {permission} on {target} to {identity} "
            f"(assignment {outcome.assignment.id})"
        )
    if outcome.status == Status.REVOKED:
        return (
            f"[OK] Revoked {permission} on {target} from {identity} "
            f"(assignment {outcome.assignment.id})"
        )
    if outcome.status == Status.NOTHING_TO_REVOKE:
        return f"[NO-OP] {identity} does not hold {permission} on {target}; nothing to revoke"

    error = outcome.error
    label = " ".join(part for part in (outcome.action.value, permission) if part)
    lines = [f"[FAILED] {label}: {error.kind}: {error.message}"]
    if error.details:
        lines.append(f"    Details: {error.details}")
    if isinstance(error, RoleNotFoundError) and error.available_permissions:
        lines.append("    Available application permissions (first 20):")
        for name in error.available_permissions[:20]:
            lines.append(f"      - {name}")
    return "\n".join(lines)


def format_permissions(listing: PermissionListing) -> str:
    lines = [
        f"Application permissions on {listing.target.display_name} ({listing.target.app_id})",
        f"Identity: {listing.identity.display_name} ({listing.identity.id})",
        "-" * 60,
    ]
    if not listing.permissions:
        lines.append("  (none)")
    for perm in listing.permissions:
        marker = "[x]" if perm["granted"] else "[ ]"
        lines.append(f"  {marker} {perm['name']}")
    return "\n".join(lines)


def format_output(outcomes: list, output_format: str = "text") -> str:
    if output_format == "json":
        return json.dumps(
            {
                "generated": datetime.now().isoformat(),
                "results": [o.to_dict() for o in outcomes],
            },
            indent=2,
            default=str,
        )
    return "\n".join(format_outcome(o) for o in outcomes)


# ──────────────────────────────────────────────
# Command line
# ──────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Grant or revoke an application permission for a managed identity",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Grant a Microsoft Graph permission to a Logic App's managed identity
    python msiApiPermission.py --identity-name LogicApp1 --target-api-app-id microsoft-graph \\
        --permission User.Read.All --action grant

    # Revoke it again
    python msiApiPermission.py --identity-name LogicApp1 --target-api-app-id microsoft-graph \\
        --permission User.Read.All --action revoke

    # Revoke then grant (reassign)
    python msiApiPermission.py --identity-name LogicApp1 \\
        --target-api-name "WindowsDefenderATP" --permission AdvancedQuery.Read.All --action reset

    # List application permissions on an API and which ones the identity holds
    python msiApiPermission.py --identity-name LogicApp1 --target-api-app-id graph --action list
        """,
    )

    parser.add_argument(
        "--identity-name",
        required=True,
        metavar="NAME",
        help="Display name of the managed identity's service principal.",
    )

    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--target-api-name",
        metavar="NAME",
        help="Display name of the target API's service principal.",
    )
    target.add_argument(
        "--target-api-app-id",
        metavar="APP_ID",
        help="App ID of the target API, or a well-known name: "
             + ", ".join(sorted(WELL_KNOWN_APIS)),
    )

    parser.add_argument(
        "--permission",
        metavar="PERMISSION",
        default="",
        help="The application permission (app role value), e.g. 'User.Read.All'.",
    )

    parser.add_argument(
        "--action",
        required=True,
        choices=[a.value for a in Action],
        help="grant, revoke, reset (revoke then grant) or list.",
    )

    parser.add_argument(
        "--tenant-id",
        default=os.getenv("AZURE_TENANT_ID"),
        help="Tenant to sign in to with --interactive (default: $AZURE_TENANT_ID).",
    )

    parser.add_argument(
        "--interactive", "-i",
        action="store_true",
        help="Use interactive browser authentication",
    )

    parser.add_argument(
        "--output", "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    return parser


def build_credential(use_interactive: bool = False, tenant_id: str = None):
    if use_interactive:
        return InteractiveBrowserCredential(tenant_id=tenant_id) if tenant_id else InteractiveBrowserCredential()
    return DefaultAzureCredential()


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    if not verbose:
        for name in ("azure", "httpx", "kiota_http", "msgraph"):
            logging.getLogger(name).setLevel(logging.WARNING)


def request_from_args(args) -> AssignmentRequest:
    return AssignmentRequest(
        identity_name=args.identity_name,
        permission_name=args.permission or "",
        target_api_name=args.target_api_name or "",
        target_api_app_id=args.target_api_app_id or "",
    )


async def run(args, client) -> int:
    """Run the requested action against an already-authenticated directory client."""
    assigner = PermissionAssigner(client)
    action = Action(args.action)
    request = request_from_args(args)

    if action == Action.LIST:
        try:
            listing = await assigner.list_permissions(request)
        except PermissionAssignmentError as e:
            if args.output == "json":
                print(json.dumps({"error": e.to_dict()}, indent=2))
            else:
                print(f"[FAILED] list: {e.kind}: {e.message}")
            return 1
        if args.output == "json":
            print(json.dumps(listing.to_dict(), indent=2))
        else:
            print(format_permissions(listing))
        return 0

    if action == Action.RESET:
        outcomes = await assigner.reset(request)
    else:
        outcomes = [await assigner.execute(request, action)]

    print(format_output(outcomes, args.output))
    return 0 if all(o.ok for o in outcomes) else 1


async def main(argv: list = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if args.action != Action.LIST.value and not (args.permission or "").strip():
        error = ValidationError(f"--action {args.action} requires --permission.")
        outcome = Outcome(Action(args.action), Status.FAILED, request_from_args(args), error=error)
        print(format_output([outcome], args.output))
        return 1

    credential = build_credential(args.interactive, args.tenant_id)
    try:
        client = GraphDirectoryClient(credential)
        return await run(args, client)
    finally:
        credential.close()


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(130)


if __name__ == "__main__":
    cli()
