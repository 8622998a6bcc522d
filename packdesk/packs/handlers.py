# packdesk/packs/handlers.py
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError
from pydantic.alias_generators import to_snake

from packdesk.core.errors import (
    DependencyError,
    InvalidArgumentError,
    InvalidStateError,
    StateOutOfSyncError,
)
from packdesk.core.ids import operationId as newOperationId
from packdesk.packs.collaborators import InstalledPackRegistry, JobQueue, TitleOracle
from packdesk.packs.conflicts import detectConflicts
from packdesk.packs.manifest import Manifest
from packdesk.packs.operations import OperationRegistry, OperationStatus, OperationType
from packdesk.packs.resolver import (
    findDependents,
    requiredAction,
    resolveSelections,
)
from packdesk.packs.state import PackSessionState, PackState, buildTitle, createSessionState
from packdesk.packs.sync import buildReconcileCommands, diffPacks
from packdesk.packs.types import PackAction
from packdesk.packs.validation import validateBatch

logger = logging.getLogger(__name__)

__all__ = [
    "CommandContext",
    "CommandResult",
    "Handler",
    "HANDLERS",
    "STATELESS_COMMANDS",
    "buildBaseline",
    "buildApplyOperations",
]



# ------------------------------------------------------------------ #
# Context / result
# ------------------------------------------------------------------ #

@dataclass(frozen=True, slots=True, kw_only=True)
class CommandContext:
    """Everything a handler may read besides the session state itself."""
    userId: str
    refId: str
    manifest: Manifest
    installedRegistry: InstalledPackRegistry
    titleOracle: TitleOracle | None = None
    operations: OperationRegistry | None = None
    jobQueue: JobQueue | None = None
    refreshPolicy: str = "revalidate"



@dataclass(slots=True, kw_only=True)
class CommandResult:
    """
    `persist=False` tells the caller not to write `state` back. When
    `clearStored` is set the stored session must be dropped instead.
    """
    state: PackSessionState
    warnings: list[str] = field(default_factory=list)
    persist: bool = True
    clearStored: bool = False
    operationId: str | None = None
    status: str | None = None
    summary: dict[str, int] | None = None



Handler = Callable[[CommandContext, PackSessionState | None, Mapping[str, Any]], CommandResult]



# ------------------------------------------------------------------ #
# Command payloads
# ------------------------------------------------------------------ #

class CommandData(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_snake,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
    )



class NoArgsData(CommandData):
    model_config = ConfigDict(extra="ignore")



class PackNameData(CommandData):
    packName: str = Field(min_length=1, max_length=255)



class DeselectPackData(PackNameData):
    cascade: StrictBool = False



class SetPackActionData(PackNameData):
    # Reconcile entries also carry versions and the auto reason; those are
    # server-owned and ignored here.
    model_config = ConfigDict(extra="ignore")
    action: PackAction



class RenamePageData(PackNameData):
    pageName: str = Field(min_length=1, max_length=255)
    newTitle: str = Field(min_length=1, max_length=255)
    # Full page record sent by reconcile queues; only new_title is used
    page: dict[str, Any] | None = None



class SetPackPrefixData(PackNameData):
    prefix: str = Field(max_length=255)



class ApplyData(CommandData):
    stateHash: str = Field(min_length=1)
    # Client view of the packs, used to build the reconcile queue on mismatch
    packs: dict[str, Any] | None = None



ModelT = TypeVar("ModelT", bound=CommandData)



def _parse(model: type[ModelT], command: str, data: Mapping[str, Any] | None) -> ModelT:
    if data is not None and not isinstance(data, Mapping):
        raise InvalidArgumentError(f"{command}: data must be an object")
    try:
        return model.model_validate(dict(data or {}))
    except ValidationError as err:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in e['loc']) or 'data'}: {e['msg']}" for e in err.errors()
        )
        raise InvalidArgumentError(f"{command}: invalid or missing {problems}") from err



# ------------------------------------------------------------------ #
# Shared helpers
# ------------------------------------------------------------------ #

def _requireState(state: PackSessionState | None, command: str) -> PackSessionState:
    if state is None:
        raise InvalidStateError(f"{command}: no active session, run init first")
    return state



def _requirePack(ctx: CommandContext, state: PackSessionState, packName: str) -> PackState:
    if packName not in ctx.manifest:
        raise InvalidArgumentError(f"Pack '{packName}' not found in manifest")
    pack = state.packs.get(packName)
    if pack is None:
        raise InvalidArgumentError(f"Pack '{packName}' not found in state")
    return pack



def _finish(ctx: CommandContext, state: PackSessionState, warnings: list[str] | None = None) -> CommandResult:
    """Re-run conflict detection and stamp the state; conflicts only ever warn."""
    allWarnings = list(warnings or [])
    allWarnings.extend(detectConflicts(state, ctx.titleOracle))
    state.touch()
    return CommandResult(state=state, warnings=allWarnings)



def buildBaseline(ctx: CommandContext) -> PackSessionState:
    """Fresh state reflecting what is installed right now, nothing selected."""
    return createSessionState(ctx.refId, ctx.userId, ctx.manifest, ctx.installedRegistry.listInstalled(ctx.refId))



def _unselect(ctx: CommandContext, state: PackSessionState, packName: str, *, cascade: bool) -> list[str]:
    """
    Return `packName` to unchanged. Without cascade any actioned dependent
    is an error and nothing is touched; with cascade dependents are reset
    first, deepest first. Returns the dependents that were reset.
    """
    dependents = findDependents(state, ctx.manifest, packName)
    if dependents and not cascade:
        raise DependencyError(
            f"Cannot deselect '{packName}': required by {', '.join(dependents)}",
            dependents=dependents,
        )

    cascaded: list[str] = []
    done: set[str] = {packName}

    def resetDependents(name: str) -> None:
        for dependent in findDependents(state, ctx.manifest, name):
            if dependent in done:
                continue
            done.add(dependent)
            resetDependents(dependent)
            state.packs[dependent].setAction(PackAction.UNCHANGED)
            cascaded.append(dependent)

    if cascade:
        resetDependents(packName)

    state.packs[packName].setAction(PackAction.UNCHANGED)
    resolveSelections(state, ctx.manifest)
    return cascaded



# ------------------------------------------------------------------ #
# Handlers
# ------------------------------------------------------------------ #

def handleInit(ctx: CommandContext, state: PackSessionState | None, data: Mapping[str, Any]) -> CommandResult:
    _parse(NoArgsData, "init", data)
    fresh = buildBaseline(ctx)
    logger.info("Session initialised with %d pack(s)", len(fresh.packs))
    return _finish(ctx, fresh)



def handleSelectPack(ctx: CommandContext, state: PackSessionState | None, data: Mapping[str, Any]) -> CommandResult:
    args = _parse(PackNameData, "select_pack", data)
    working = _requireState(state, "select_pack").copy()
    pack = _requirePack(ctx, working, args.packName)

    warnings: list[str] = []
    action = requiredAction(pack)
    if action is PackAction.UNCHANGED:
        warnings.append(f"Pack '{args.packName}' is already installed at version {pack.currentVersion}")
        pack.setAction(PackAction.UNCHANGED)
    else:
        pack.setAction(action)
    resolveSelections(working, ctx.manifest)
    return _finish(ctx, working, warnings)



def handleDeselectPack(ctx: CommandContext, state: PackSessionState | None, data: Mapping[str, Any]) -> CommandResult:
    args = _parse(DeselectPackData, "deselect_pack", data)
    working = _requireState(state, "deselect_pack").copy()
    _requirePack(ctx, working, args.packName)

    cascaded = _unselect(ctx, working, args.packName, cascade=args.cascade)
    warnings = [f"Cascade deselected: {', '.join(cascaded)}"] if cascaded else []
    return _finish(ctx, working, warnings)



def handleSetPackAction(ctx: CommandContext, state: PackSessionState | None, data: Mapping[str, Any]) -> CommandResult:
    args = _parse(SetPackActionData, "set_pack_action", data)
    working = _requireState(state, "set_pack_action").copy()
    pack = _requirePack(ctx, working, args.packName)

    action = args.action
    if action is PackAction.UNCHANGED:
        _unselect(ctx, working, args.packName, cascade=False)
        return _finish(ctx, working)

    if action is PackAction.INSTALL and pack.installed:
        raise InvalidArgumentError(f"Pack '{args.packName}' is already installed, cannot install")
    if action in (PackAction.UPDATE, PackAction.REMOVE) and not pack.installed:
        raise InvalidArgumentError(f"Pack '{args.packName}' is not installed, cannot {action.value}")

    if action is PackAction.REMOVE:
        dependents = findDependents(working, ctx.manifest, args.packName)
        if dependents:
            raise DependencyError(
                f"Cannot remove '{args.packName}': required by {', '.join(dependents)}",
                dependents=dependents,
            )
        pack.setAction(PackAction.REMOVE)
    else:
        pack.setAction(action)
    resolveSelections(working, ctx.manifest)
    return _finish(ctx, working)



def handleRenamePage(ctx: CommandContext, state: PackSessionState | None, data: Mapping[str, Any]) -> CommandResult:
    args = _parse(RenamePageData, "rename_page", data)
    working = _requireState(state, "rename_page").copy()
    pack = _requirePack(ctx, working, args.packName)
    page = pack.pages.get(args.pageName)
    if page is None:
        raise InvalidArgumentError(f"Page '{args.pageName}' not found in pack '{args.packName}'")

    page.finalTitle = args.newTitle
    return _finish(ctx, working)



def handleSetPackPrefix(ctx: CommandContext, state: PackSessionState | None, data: Mapping[str, Any]) -> CommandResult:
    args = _parse(SetPackPrefixData, "set_pack_prefix", data)
    working = _requireState(state, "set_pack_prefix").copy()
    pack = _requirePack(ctx, working, args.packName)

    newPrefix = args.prefix.strip("/")
    for page in pack.pages.values():
        oldDefault = page.defaultTitle
        page.defaultTitle = buildTitle(newPrefix, page.name)
        # Titles the user customised stay put
        if page.finalTitle == oldDefault:
            page.finalTitle = page.defaultTitle
    pack.prefix = newPrefix
    return _finish(ctx, working)



def handleRefresh(ctx: CommandContext, state: PackSessionState | None, data: Mapping[str, Any]) -> CommandResult:
    _parse(NoArgsData, "refresh", data)
    if state is None or ctx.refreshPolicy == "rebuild":
        logger.debug("Refresh rebuilding session (policy=%s, hadState=%s)", ctx.refreshPolicy, state is not None)
        return _finish(ctx, buildBaseline(ctx))

    working = state.copy()
    resolveSelections(working, ctx.manifest)
    return _finish(ctx, working)



def handleClear(ctx: CommandContext, state: PackSessionState | None, data: Mapping[str, Any]) -> CommandResult:
    _parse(NoArgsData, "clear", data)
    result = _finish(ctx, buildBaseline(ctx))
    result.persist = False
    result.clearStored = True
    return result



def buildApplyOperations(ctx: CommandContext, state: PackSessionState) -> list[dict[str, Any]]:
    """
    One entry per actioned pack, by name. Removals of packs the registry
    has no id for are skipped with a warning.
    """
    operations: list[dict[str, Any]] = []
    for name, pack in state.actionedPacks().items():
        if pack.action is PackAction.REMOVE:
            packId = ctx.installedRegistry.packIdByName(ctx.refId, name)
            if packId is None:
                logger.warning("Skipping removal of '%s': no installed pack id", name)
                continue
            operations.append({"action": "remove", "pack_name": name, "pack_id": packId})
            continue
        operations.append({
            "action": pack.action.value,
            "pack_name": name,
            "current_version": pack.currentVersion,
            "target_version": pack.targetVersion,
            "depends_on": list(ctx.manifest.dependenciesOf(name)),
            "pages": [
                {"name": pageName, "final_title": pack.pages[pageName].finalTitle}
                for pageName in sorted(pack.pages)
            ],
        })
    return operations



def handleApply(ctx: CommandContext, state: PackSessionState | None, data: Mapping[str, Any]) -> CommandResult:
    args = _parse(ApplyData, "apply", data)
    current = _requireState(state, "apply")
    if ctx.operations is None or ctx.jobQueue is None:
        raise InvalidStateError("apply: no operation registry or job queue configured")

    serverHash = current.hash
    if args.stateHash != serverHash:
        clientPacks = args.packs or {}
        serverPacks = current.packsToDict()
        commands = buildReconcileCommands(clientPacks, serverPacks)
        logger.info("Apply rejected: client hash %s != server hash %s (%d reconcile command(s))", args.stateHash, serverHash, len(commands))
        raise StateOutOfSyncError(
            "Session state is out of sync with the server",
            serverPacks=serverPacks,
            serverHash=serverHash,
            differences=diffPacks(clientPacks, serverPacks),
            reconcileCommands=commands,
        )

    operations = buildApplyOperations(ctx, current)
    if not operations:
        raise InvalidStateError("no operations to apply")

    installs = [op["pack_name"] for op in operations if op["action"] == "install"]
    updates = {op["pack_name"]: (op["current_version"], op["target_version"]) for op in operations if op["action"] == "update"}
    removes = [op["pack_name"] for op in operations if op["action"] == "remove"]
    validateBatch(
        ctx.manifest,
        ctx.installedRegistry.listInstalled(ctx.refId),
        installs=installs,
        updates=updates,
        removes=removes,
    ).raiseForProblems()

    summary = {
        "total_operations": len(operations),
        "installs": len(installs),
        "updates": len(updates),
        "removes": len(removes),
    }
    opId = newOperationId(OperationType.PACK_APPLY.value)
    message = f"Pack operations queued: {summary['installs']} installs, {summary['updates']} updates, {summary['removes']} removes"
    ctx.operations.create(opId, OperationType.PACK_APPLY, ctx.userId, message=message)
    ctx.jobQueue.enqueue(OperationType.PACK_APPLY.value, {
        "operation_id": opId,
        "ref_id": ctx.refId,
        "user_id": ctx.userId,
        "operations": operations,
    })
    logger.info("%s (operation %s)", message, opId)

    return CommandResult(
        state=buildBaseline(ctx),
        persist=False,
        clearStored=True,
        operationId=opId,
        status=OperationStatus.QUEUED.value,
        summary=summary,
    )



# ------------------------------------------------------------------ #
# Dispatch table
# ------------------------------------------------------------------ #

HANDLERS: dict[str, Handler] = {
    "init": handleInit,
    "select_pack": handleSelectPack,
    "deselect_pack": handleDeselectPack,
    "set_pack_action": handleSetPackAction,
    "rename_page": handleRenamePage,
    "set_pack_prefix": handleSetPackPrefix,
    "refresh": handleRefresh,
    "clear": handleClear,
    "apply": handleApply,
}

# Commands that may run without a stored session.
STATELESS_COMMANDS = frozenset({"init", "refresh", "clear"})
