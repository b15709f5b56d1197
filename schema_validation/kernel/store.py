"""
Schema Validation Kernel — Store

Sits between the pure reducers and the outside world (the data service,
the app registry). Owns the single StoreState value and the background
work that feeds it.

  root_reduce     — pure (StoreState, action) → ReduceResult
  ValidationStore — dispatch, listeners, registry wiring, async IO

This is where IO happens. The reducers are pure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import replace
from typing import Any, assert_never

from pydantic import ValidationError

from schema_validation.config import Settings, settings
from schema_validation.kernel import registry as events
from schema_validation.kernel.actions import (
    SAMPLE_DOCUMENTS_ACTION_TYPES,
    VALIDATION_ACTION_TYPES,
    Action,
    DataServiceConnected,
    FetchFailed,
    FetchRequested,
    FieldsChanged,
    NamespaceChanged,
    ReadonlyChanged,
    SampleDocumentsFailed,
    SampleDocumentsFetched,
    SampleDocumentsRequested,
    SaveFailed,
    SaveRequested,
    ServerVersionChanged,
    ValidationActionChanged,
    ValidationCanceled,
    ValidationFetched,
    ValidationLevelChanged,
    ValidationSaved,
    ValidatorChanged,
    ZeroStateChanged,
)
from schema_validation.kernel.checker import RuleChecker
from schema_validation.kernel.data_service import DataService
from schema_validation.kernel.reducer import reduce
from schema_validation.kernel.registry import AppRegistry
from schema_validation.kernel.sample_documents import (
    SampleQueryError,
    empty_sample_documents,
    fetch_sample_documents,
    reduce_sample_documents,
    supersede_sample_documents,
)
from schema_validation.kernel.types import (
    READ_ONLY_WARNING,
    VERSION_WARNING,
    ErrorInfo,
    Namespace,
    ReduceResult,
    StoreState,
    ValidationState,
    is_version_supported,
)
from schema_validation.models.collection import CollectionInfo, build_coll_mod

logger = logging.getLogger(__name__)

Listener = Callable[[StoreState], None]


# ---------------------------------------------------------------------------
# Root reducer
# ---------------------------------------------------------------------------


def initial_state() -> StoreState:
    return StoreState()


def root_reduce(
    state: StoreState,
    action: Action,
    checker: RuleChecker | None = None,
    min_version: str | None = None,
) -> ReduceResult:
    """
    Route action to the reducer that owns it and fold the result back
    into the store state. Rejections leave the state untouched.
    """
    min_version = settings.MIN_SERVER_VERSION if min_version is None else min_version

    if isinstance(action, VALIDATION_ACTION_TYPES):
        result = reduce(state.validation, action, checker)
        if not result.applied:
            return ReduceResult(state=state, applied=False, error=result.error)
        new_state = replace(state, validation=result.state)
        if isinstance(action, ValidatorChanged | ValidationCanceled):
            samples = supersede_sample_documents(state.sample_documents)
            new_state = replace(new_state, sample_documents=samples)
        if isinstance(action, ValidatorChanged) or (
            isinstance(action, ValidationFetched) and result.state.validator
        ):
            new_state = replace(new_state, is_zero_state=False)
        return ReduceResult(state=new_state, applied=True)

    if isinstance(action, SAMPLE_DOCUMENTS_ACTION_TYPES):
        result = reduce_sample_documents(state.sample_documents, action)
        if not result.applied:
            return ReduceResult(state=state, applied=False, error=result.error)
        return ReduceResult(state=replace(state, sample_documents=result.state), applied=True)

    if isinstance(action, NamespaceChanged):
        return ReduceResult(state=_reset(state, action.namespace, min_version), applied=True)
    if isinstance(action, DataServiceConnected):
        return ReduceResult(state=replace(state, data_service_error=action.error), applied=True)
    if isinstance(action, ServerVersionChanged):
        new_state = replace(state, server_version=action.server_version)
        return ReduceResult(state=_with_editability(new_state, min_version), applied=True)
    if isinstance(action, ReadonlyChanged):
        new_state = replace(state, is_readonly=action.is_readonly)
        return ReduceResult(state=_with_editability(new_state, min_version), applied=True)
    if isinstance(action, FieldsChanged):
        return ReduceResult(state=replace(state, fields=tuple(action.fields)), applied=True)
    if isinstance(action, ZeroStateChanged):
        return ReduceResult(state=replace(state, is_zero_state=action.is_zero_state), applied=True)
    assert_never(action)


def _reset(state: StoreState, namespace: Namespace, min_version: str) -> StoreState:
    """
    Fresh validation and samples for a new target.
    Counters keep growing so completions issued for the old target can
    never match the new one.
    """
    validation = ValidationState(edit_sequence=state.validation.edit_sequence + 1)
    new_state = replace(
        state,
        namespace=namespace if namespace.collection else None,
        validation=validation,
        sample_documents=empty_sample_documents(state.sample_documents.generation + 1),
        is_readonly=False,
        fields=(),
        is_zero_state=True,
    )
    return _with_editability(new_state, min_version)


def _with_editability(state: StoreState, min_version: str) -> StoreState:
    editable = not state.is_readonly and is_version_supported(state.server_version, min_version)
    if editable == state.validation.is_editable:
        return state
    return replace(state, validation=replace(state.validation, is_editable=editable))


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ValidationStore:
    """
    The validation editor's state container.

    Construct with an AppRegistry, then activate() to start listening to
    host events. Intents (change_validator, save, ...) dispatch actions and
    spawn background work on the running event loop; wait_idle() settles it.
    """

    def __init__(
        self,
        registry: AppRegistry,
        checker: RuleChecker | None = None,
        config: Settings = settings,
    ) -> None:
        self._registry = registry
        self._checker = checker or RuleChecker()
        self._config = config
        self._state = initial_state()
        self._data_service: DataService | None = None
        self._listeners: list[Listener] = []
        self._unsubscribes: list[Callable[[], None]] = []
        self._tasks: set[asyncio.Task] = set()
        # Bumped on every namespace change; IO started under an older value is dropped.
        self._namespace_generation = 0

    # -- state --

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def data_service(self) -> DataService | None:
        return self._data_service

    @property
    def is_editable(self) -> bool:
        return self._state.validation.is_editable

    @property
    def is_version_supported(self) -> bool:
        return is_version_supported(self._state.server_version, self._config.MIN_SERVER_VERSION)

    @property
    def warning(self) -> str | None:
        """Banner text explaining why editing is disabled, if it is."""
        if self._state.is_readonly:
            return READ_ONLY_WARNING
        if not self.is_version_supported:
            return VERSION_WARNING.format(minimum=self._config.MIN_SERVER_VERSION)
        return None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener with the new state after every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: Action) -> ReduceResult:
        result = root_reduce(self._state, action, self._checker, self._config.MIN_SERVER_VERSION)
        if not result.applied:
            logger.debug("store: rejected %s: %s", type(action).__name__, result.error)
            return result
        if result.state != self._state:
            self._state = result.state
            self._notify()
        return result

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("store: listener failed")

    # -- lifecycle --

    def activate(self) -> None:
        """Subscribe to the registry events the store reacts to."""
        if self._unsubscribes:
            return
        handlers: dict[str, Callable[..., Any]] = {
            events.DATA_SERVICE_CONNECTED: self._on_data_service_connected,
            events.DATA_SERVICE_DISCONNECTED: self._on_data_service_disconnected,
            events.COLLECTION_CHANGED: self._on_collection_changed,
            events.FIELDS_CHANGED: self._on_fields_changed,
            events.SERVER_VERSION_CHANGED: self._on_server_version_changed,
        }
        for event, handler in handlers.items():
            self._unsubscribes.append(self._registry.subscribe(event, handler))
        logger.debug("store: activated")

    def deactivate(self) -> None:
        """Stop listening and cancel background work."""
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()
        for task in list(self._tasks):
            task.cancel()
        logger.debug("store: deactivated")

    def _on_data_service_connected(self, error: Any, data_service: DataService | None) -> None:
        info = _connection_error(error)
        self._data_service = None if info is not None else data_service
        self.dispatch(DataServiceConnected(error=info, data_service=self._data_service))
        if info is not None:
            logger.warning("store: data service failed to connect: %s", info.message)
            return
        if self._data_service is not None:
            self._spawn(self._load())

    def _on_data_service_disconnected(self) -> None:
        self._data_service = None
        self.dispatch(DataServiceConnected(error=None, data_service=None))

    def _on_collection_changed(self, ns: str) -> None:
        self.change_namespace(Namespace.from_string(ns))

    def _on_fields_changed(self, fields: Iterable[Any]) -> None:
        # Accept bare names or schema field records ({"name": ...})
        names = tuple(f["name"] if isinstance(f, dict) else str(f) for f in fields)
        self.dispatch(FieldsChanged(fields=names))

    def _on_server_version_changed(self, version: str | None) -> None:
        self.dispatch(ServerVersionChanged(server_version=version))

    async def _load(self) -> None:
        await self.refresh_server_version()
        await self.fetch_validation()

    # -- intents --

    def change_namespace(self, namespace: Namespace) -> asyncio.Task | None:
        """Switch target. A namespace without a collection resets the editor and fetches nothing."""
        self._namespace_generation += 1
        self.dispatch(NamespaceChanged(namespace=namespace))
        logger.info("store: namespace changed to %s", namespace.ns)
        if not namespace.collection or self._data_service is None:
            return None
        return self._spawn(self._fetch_validation(namespace, self._namespace_generation))

    def change_validator(self, validator: str) -> ReduceResult:
        result = self.dispatch(ValidatorChanged(validator=validator))
        if result.applied and self._state.validation.syntax_error is None and self._can_query():
            self._spawn(self.fetch_sample_documents())
        return result

    def change_validation_action(self, validation_action: str) -> ReduceResult:
        return self.dispatch(ValidationActionChanged(validation_action=validation_action))

    def change_validation_level(self, validation_level: str) -> ReduceResult:
        return self.dispatch(ValidationLevelChanged(validation_level=validation_level))

    def cancel(self) -> ReduceResult:
        """Restore the last persisted triple and refresh samples for it."""
        result = self.dispatch(ValidationCanceled())
        if result.applied and self._can_query():
            self._spawn(self.fetch_sample_documents())
        return result

    def save(self) -> asyncio.Task:
        return self._spawn(self.save_validation())

    def request_fetch(self) -> asyncio.Task:
        return self._spawn(self.fetch_validation())

    def change_zero_state(self, is_zero_state: bool) -> ReduceResult:
        return self.dispatch(ZeroStateChanged(is_zero_state=is_zero_state))

    # -- async work --

    async def refresh_server_version(self) -> str | None:
        data_service = self._data_service
        if data_service is None:
            return None
        try:
            version = await asyncio.wait_for(data_service.server_version(), self._config.QUERY_TIMEOUT_SECONDS)
        except Exception as e:
            # Unknown version counts as supported; editing stays enabled.
            logger.warning("store: could not read server version: %s", e)
            return None
        self.dispatch(ServerVersionChanged(server_version=version))
        return version

    async def fetch_validation(self) -> bool:
        """
        Load the collection's validator, action and level.
        Returns True if the result was applied.
        """
        return await self._fetch_validation(self._state.namespace, self._namespace_generation)

    async def _fetch_validation(self, namespace: Namespace | None, generation: int) -> bool:
        data_service = self._data_service
        if namespace is None or not namespace.collection or data_service is None:
            return False
        if self._is_superseded(generation):
            return False

        sequence = self._state.validation.edit_sequence
        self.dispatch(FetchRequested(namespace=namespace))

        try:
            entries = await self._timed(
                data_service.list_collections(namespace.database, {"name": namespace.collection}),
                f"Fetching validation for {namespace.ns}",
            )
            info = CollectionInfo.model_validate(entries[0]) if entries else CollectionInfo(name=namespace.collection)
        except ValidationError as e:
            if self._is_superseded(generation):
                return False
            logger.warning("store: unexpected collection options for %s: %s", namespace.ns, e)
            self.dispatch(FetchFailed(error=ErrorInfo(f"Unexpected collection options: {e}", "INVALID_OPTIONS")))
            return False
        except Exception as e:
            if self._is_superseded(generation):
                return False
            logger.warning("store: fetching validation for %s failed: %s", namespace.ns, e)
            self.dispatch(FetchFailed(error=_error_info(e)))
            return False

        if self._is_superseded(generation):
            logger.debug("store: dropping validation for superseded namespace %s", namespace.ns)
            return False

        self.dispatch(ReadonlyChanged(is_readonly=info.is_readonly))
        result = self.dispatch(
            ValidationFetched(
                validator=info.options.validator,
                validation_action=info.options.validation_action,
                validation_level=info.options.validation_level,
                request_sequence=sequence,
            )
        )
        if not result.applied:
            code, _, message = (result.error or "").partition(": ")
            if code != "STALE_COMPLETION":
                logger.warning("store: could not load validation for %s: %s", namespace.ns, result.error)
                self.dispatch(FetchFailed(error=ErrorInfo(message or code, code)))
            return False
        logger.info("store: loaded validation for %s", namespace.ns)
        await self.fetch_sample_documents()
        return True

    async def save_validation(self) -> bool:
        """
        Persist the current triple with collMod.
        Returns True if the server accepted it.
        """
        validation = self._state.validation
        namespace = self._state.namespace
        data_service = self._data_service
        if namespace is None or data_service is None:
            self.dispatch(SaveFailed(error=ErrorInfo("Not connected to a collection", "NOT_CONNECTED")))
            return False
        if not validation.is_editable:
            logger.warning("store: refusing to save validation for read-only %s", namespace.ns)
            self.dispatch(SaveFailed(error=ErrorInfo(self.warning or READ_ONLY_WARNING, "NOT_EDITABLE")))
            return False

        generation = self._namespace_generation
        self.dispatch(SaveRequested())

        checked = self._checker.check(validation.validator)
        if checked.error is not None:
            self.dispatch(SaveFailed(error=checked.error))
            return False

        command = build_coll_mod(
            namespace,
            checked.value or {},
            validation.validation_action,
            validation.validation_level,
        )
        try:
            await self._timed(
                data_service.command(namespace.database, command),
                f"Saving validation for {namespace.ns}",
            )
        except Exception as e:
            if self._is_superseded(generation):
                return False
            logger.warning("store: saving validation for %s failed: %s", namespace.ns, e)
            self.dispatch(SaveFailed(error=_error_info(e)))
            return False

        logger.info("store: saved validation for %s", namespace.ns)
        if self._is_superseded(generation):
            return True
        self.dispatch(
            ValidationSaved(
                validator=validation.validator,
                validation_action=validation.validation_action,
                validation_level=validation.validation_level,
                request_sequence=validation.edit_sequence,
            )
        )
        return True

    async def fetch_sample_documents(self) -> bool:
        """
        Refresh the matching / not-matching pair for the current rule.
        Skipped while the rule has a syntax error.
        """
        validation = self._state.validation
        namespace = self._state.namespace
        data_service = self._data_service
        if validation.syntax_error is not None:
            return False
        if namespace is None or data_service is None:
            return False

        self.dispatch(SampleDocumentsRequested())
        generation = self._state.sample_documents.generation

        try:
            samples = await fetch_sample_documents(
                data_service,
                namespace,
                validation.validator,
                checker=self._checker,
                max_limit=self._config.SAMPLE_MAX_LIMIT,
                timeout=self._config.QUERY_TIMEOUT_SECONDS,
            )
        except asyncio.CancelledError:
            # Settle is_loading for this request before unwinding
            cancelled = ErrorInfo("Sample query was cancelled", "CANCELLED")
            self.dispatch(SampleDocumentsFailed(generation=generation, error=cancelled))
            raise
        except SampleQueryError as e:
            self.dispatch(SampleDocumentsFailed(generation=generation, error=e.info))
            return False
        except Exception as e:
            logger.exception("store: sample documents for %s failed", namespace.ns)
            self.dispatch(SampleDocumentsFailed(generation=generation, error=_error_info(e)))
            return False

        result = self.dispatch(
            SampleDocumentsFetched(
                generation=generation,
                matching=samples.matching,
                not_matching=samples.not_matching,
            )
        )
        return result.applied

    async def wait_idle(self) -> None:
        """Wait until all background work, including work it spawned, has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- helpers --

    def _can_query(self) -> bool:
        return self._state.namespace is not None and self._data_service is not None

    def _is_superseded(self, generation: int) -> bool:
        return generation != self._namespace_generation

    async def _timed(self, awaitable: Awaitable[Any], what: str) -> Any:
        timeout = self._config.QUERY_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except TimeoutError:
            raise TimeoutError(f"{what} timed out after {timeout}s") from None

    def _spawn(self, coro: Any) -> asyncio.Task:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            raise RuntimeError("ValidationStore needs a running event loop for background work") from None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("store: background task failed", exc_info=exc)


def _connection_error(error: Any) -> ErrorInfo | None:
    if error is None:
        return None
    if isinstance(error, ErrorInfo):
        return error
    if isinstance(error, BaseException):
        return ErrorInfo.from_exception(error)
    return ErrorInfo(str(error))


def _error_info(exc: BaseException) -> ErrorInfo:
    if isinstance(exc, TimeoutError):
        return ErrorInfo(str(exc) or "Operation timed out", "TIMEOUT")
    return ErrorInfo.from_exception(exc)
