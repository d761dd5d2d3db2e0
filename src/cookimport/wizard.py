"""Cookbook import wizard.

Forward-only state machine over the steps

    form -> upload -> processing -> review -> success

Each request the wizard issues is single-flight per operation kind and always
releases its loading flag. Failures never escape as exceptions: they are turned
into the `error` message and the step does not advance.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from cookimport.core.config import ConfigResolver, PollingPolicy
from cookimport.core.diagnostics import emit_diagnostic
from cookimport.core.errors import ResourceApiError, WizardError, WizardStateError
from cookimport.core.events import DiagnosticEvent
from cookimport.core.jobs import (
    JobHandle,
    JobLauncher,
    JobOutcome,
    JobResultItem,
    JobStatusPoller,
    PollerState,
)
from cookimport.core.logging import get_logger
from cookimport.core.resource_api import ALLOWED_CONTENT_TYPES, ResourceApi, UploadFile
from cookimport.review import ReviewableItem, materialize

_LOGGER = get_logger(__name__)


class WizardStep(StrEnum):
    FORM = "form"
    UPLOAD = "upload"
    PROCESSING = "processing"
    REVIEW = "review"
    SUCCESS = "success"


class OperationKind(StrEnum):
    CREATE = "create"
    UPLOAD = "upload"
    LAUNCH = "launch"
    CONFIRM = "confirm"


_LOADING_KINDS = frozenset({OperationKind.CREATE, OperationKind.UPLOAD, OperationKind.CONFIRM})

_VALIDATION_MESSAGES = {
    WizardStep.FORM: "Title and author are required",
    WizardStep.UPLOAD: "Select at least one index page to upload",
    WizardStep.REVIEW: "Keep at least one recipe to import",
}


@dataclass
class FormData:
    title: str = ""
    author: str = ""

    def is_complete(self) -> bool:
        return self.title.strip() != "" and self.author.strip() != ""

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "author": self.author}


@dataclass
class WizardState:
    """Data carried across wizard steps for one workflow instance."""

    current_step: WizardStep = WizardStep.FORM
    form_data: FormData = field(default_factory=FormData)
    uploaded_payload: list[UploadFile] = field(default_factory=list)
    owner_id: str | None = None
    review_items: list[ReviewableItem] = field(default_factory=list)
    review_populated: bool = False

    def bind_owner(self, owner_id: str) -> None:
        if self.owner_id is not None:
            raise WizardStateError(
                f"Owner resource already bound: {self.owner_id}",
                "Call reset() to start a new import",
            )
        self.owner_id = owner_id

    def populate_review(self, results: Iterable[JobResultItem]) -> None:
        if self.review_populated:
            raise WizardStateError("Review items were already populated for this import")
        self.review_items = materialize(results)
        self.review_populated = True


class ImportWizard:
    """Drive one cookbook import from form entry to confirmed recipes."""

    def __init__(
        self,
        api: ResourceApi,
        *,
        policy: PollingPolicy | None = None,
        launcher: JobLauncher | None = None,
        poller: JobStatusPoller | None = None,
    ) -> None:
        self._api = api
        self._launcher = launcher or JobLauncher(api)
        self._poller = poller or JobStatusPoller(api, policy)
        self._state = WizardState()
        self._error: str | None = None
        self._in_flight: set[OperationKind] = set()
        # Bumped by reset(); results of requests from an older epoch are dropped.
        self._epoch = 0

    @classmethod
    def from_resolver(
        cls, resolver: ConfigResolver, api: ResourceApi | None = None
    ) -> ImportWizard:
        return cls(
            api if api is not None else ResourceApi.from_resolver(resolver),
            policy=resolver.resolve_polling_policy(),
        )

    # State

    @property
    def state(self) -> WizardState:
        return self._state

    @property
    def current_step(self) -> WizardStep:
        return self._state.current_step

    @property
    def owner_id(self) -> str | None:
        return self._state.owner_id

    @property
    def form_data(self) -> FormData:
        return self._state.form_data

    @property
    def uploaded_files(self) -> tuple[UploadFile, ...]:
        return tuple(self._state.uploaded_payload)

    @property
    def review_items(self) -> list[ReviewableItem]:
        return self._state.review_items

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def job(self) -> JobHandle | None:
        """Latest job snapshot, for progress display."""
        return self._poller.handle

    @property
    def poller(self) -> JobStatusPoller:
        return self._poller

    @property
    def is_loading(self) -> bool:
        return bool(self._in_flight & _LOADING_KINDS)

    @property
    def is_processing(self) -> bool:
        return (
            OperationKind.LAUNCH in self._in_flight
            or self._poller.state == PollerState.POLLING
        )

    def is_busy(self, kind: OperationKind) -> bool:
        return kind in self._in_flight

    @property
    def can_proceed(self) -> bool:
        step = self._state.current_step
        if step == WizardStep.FORM:
            return self._state.form_data.is_complete()
        if step == WizardStep.UPLOAD:
            return len(self._state.uploaded_payload) > 0
        if step == WizardStep.REVIEW:
            return any(item.keep for item in self._state.review_items)
        return False

    @property
    def items_to_keep(self) -> list[ReviewableItem]:
        return [item for item in self._state.review_items if item.keep]

    @property
    def items_to_skip(self) -> list[ReviewableItem]:
        return [item for item in self._state.review_items if not item.keep]

    # Local edits

    def update_form(self, *, title: str | None = None, author: str | None = None) -> None:
        if title is not None:
            self._state.form_data.title = title
        if author is not None:
            self._state.form_data.author = author

    def stage_files(self, files: Iterable[UploadFile]) -> bool:
        """Add index page images to the upload buffer.

        All-or-nothing: one file with an unsupported type rejects the batch.
        """
        batch = list(files)
        for f in batch:
            if f.content_type not in ALLOWED_CONTENT_TYPES:
                self._error = (
                    f"Invalid image type: {f.content_type}. Only JPEG and PNG are allowed."
                )
                return False
        self._state.uploaded_payload.extend(batch)
        return True

    def unstage_file(self, index: int) -> UploadFile | None:
        if 0 <= index < len(self._state.uploaded_payload):
            return self._state.uploaded_payload.pop(index)
        return None

    def update_item(self, index: int, **fields: Any) -> bool:
        """Overwrite fields of one review item.

        Marks the item edited only when name, page_number or ingredient changes;
        a keep-only update leaves the flag alone. Returns False, with `error` set
        for an unknown field, when the index or a field name is not valid.
        """
        item = self._item_at(index)
        if item is None:
            return False
        try:
            item.apply_update(fields)
        except WizardError as e:
            self._error = e.message
            return False
        return True

    def toggle_keep(self, index: int) -> bool:
        item = self._item_at(index)
        if item is None:
            return False
        item.toggle_keep()
        return True

    # Step transitions

    async def proceed(self) -> bool:
        """Run the action that leaves the current step, if its predicate holds."""
        step = self._state.current_step
        if step not in _VALIDATION_MESSAGES:
            _LOGGER.debug(f"proceed ignored at step={step.value}")
            return False
        if not self.can_proceed:
            self._error = _VALIDATION_MESSAGES[step]
            return False

        if step == WizardStep.FORM:
            return await self.create_owner()
        if step == WizardStep.UPLOAD:
            return await self.upload_payload()
        return await self.confirm_import()

    async def create_owner(self) -> bool:
        """form -> upload: create the cookbook and bind its id."""
        if not self._state.form_data.is_complete():
            self._error = _VALIDATION_MESSAGES[WizardStep.FORM]
            return False
        if self._state.owner_id is not None:
            self._error = "Cookbook already created for this import"
            return False
        if not self._acquire(OperationKind.CREATE):
            return False

        epoch = self._epoch
        try:
            owner_id = await self._api.create_owner_resource(self._state.form_data.to_dict())
        except ResourceApiError as e:
            return self._fail(OperationKind.CREATE, epoch, e)
        finally:
            self._release(OperationKind.CREATE, epoch)

        if epoch != self._epoch:
            return False
        self._state.bind_owner(owner_id)
        self._set_step(WizardStep.UPLOAD)
        return True

    async def upload_payload(self) -> bool:
        """upload -> processing: send the staged pages, then launch OCR.

        Returns True only when the upload succeeded and the job is being polled.
        A launch rejection leaves the wizard on the processing step with `error`
        set; call retry_processing() to try again.
        """
        owner_id = self._require_owner()
        if owner_id is None:
            return False
        if not self._state.uploaded_payload:
            self._error = _VALIDATION_MESSAGES[WizardStep.UPLOAD]
            return False
        if not self._acquire(OperationKind.UPLOAD):
            return False

        epoch = self._epoch
        try:
            await self._api.upload_payload(owner_id, list(self._state.uploaded_payload))
        except ResourceApiError as e:
            return self._fail(OperationKind.UPLOAD, epoch, e)
        finally:
            self._release(OperationKind.UPLOAD, epoch)

        if epoch != self._epoch:
            return False
        self._set_step(WizardStep.PROCESSING)
        return await self.start_processing()

    async def start_processing(self) -> bool:
        """Launch the OCR job and hand it to the poller.

        A job that is already running (409) is attached to, not reported as an error.
        """
        owner_id = self._require_owner()
        if owner_id is None:
            return False
        if self._state.current_step != WizardStep.PROCESSING:
            self._error = "Processing can only start from the processing step"
            return False
        if self.is_processing:
            _LOGGER.debug(f"processing already active for owner_id={owner_id}")
            return False
        if not self._acquire(OperationKind.LAUNCH):
            return False

        # A new launch supersedes whatever job was tracked before.
        self._poller.clear()
        epoch = self._epoch
        try:
            outcome = await self._launcher.start(owner_id)
        finally:
            self._release(OperationKind.LAUNCH, epoch)

        if epoch != self._epoch:
            return False
        if not outcome.should_poll:
            self._error = outcome.reason or "Failed to start OCR processing"
            return False

        self._poller.begin(owner_id, self._on_job_terminal)
        return True

    async def retry_processing(self) -> bool:
        """Relaunch after a failed job or a rejected launch."""
        return await self.start_processing()

    async def wait_for_processing(self) -> JobOutcome | None:
        return await self._poller.wait()

    async def confirm_import(self) -> bool:
        """review -> success: submit every review item with its keep flag."""
        owner_id = self._require_owner()
        if owner_id is None:
            return False
        if not any(item.keep for item in self._state.review_items):
            self._error = _VALIDATION_MESSAGES[WizardStep.REVIEW]
            return False
        if not self._acquire(OperationKind.CONFIRM):
            return False

        epoch = self._epoch
        payload = [item.to_confirmed() for item in self._state.review_items]
        try:
            await self._api.confirm_import(owner_id, payload)
        except ResourceApiError as e:
            return self._fail(OperationKind.CONFIRM, epoch, e)
        finally:
            self._release(OperationKind.CONFIRM, epoch)

        if epoch != self._epoch:
            return False
        self._set_step(WizardStep.SUCCESS)
        return True

    def go_to_step(self, step: WizardStep | str) -> None:
        """Jump to a step without checking its prerequisites."""
        self._set_step(WizardStep(step))

    def reset(self) -> None:
        """Abandon the current import and return to an empty form."""
        self._poller.clear()
        self._epoch += 1
        self._in_flight.clear()
        self._error = None
        self._state = WizardState()
        _LOGGER.verbose("wizard reset")

    def dispose(self) -> None:
        """Release the polling timer; call when the hosting view goes away."""
        self._poller.stop()

    # Internals

    def _on_job_terminal(self, outcome: JobOutcome) -> None:
        if not outcome.success:
            self._error = outcome.error_message or "OCR processing failed"
            return
        if self._state.review_populated:
            _LOGGER.warning("job completed again after review items were populated; ignored")
            return
        self._state.populate_review(outcome.results)
        self._error = None
        self._set_step(WizardStep.REVIEW)

    def _item_at(self, index: int) -> ReviewableItem | None:
        items = self._state.review_items
        if 0 <= index < len(items):
            return items[index]
        _LOGGER.warning(f"no review item at index {index} (have {len(items)})")
        return None

    def _require_owner(self) -> str | None:
        if self._state.owner_id is None:
            self._error = "No cookbook ID"
        return self._state.owner_id

    def _acquire(self, kind: OperationKind) -> bool:
        if kind in self._in_flight:
            _LOGGER.debug(f"{kind.value} already in flight; duplicate refused")
            return False
        self._in_flight.add(kind)
        self._error = None
        return True

    def _release(self, kind: OperationKind, epoch: int) -> None:
        if epoch == self._epoch:
            self._in_flight.discard(kind)

    def _fail(self, kind: OperationKind, epoch: int, exc: ResourceApiError) -> bool:
        if epoch != self._epoch:
            return False
        self._error = exc.message
        _LOGGER.warning(
            f"{kind.value} failed: owner_id={self._state.owner_id} "
            f"status_code={exc.status_code} error={exc.message}"
        )
        return False

    def _set_step(self, step: WizardStep) -> None:
        prev = self._state.current_step
        self._state.current_step = step
        _LOGGER.verbose(f"wizard step: {prev.value} -> {step.value}")
        emit_diagnostic(
            DiagnosticEvent.WIZARD_STEP,
            {"from": prev.value, "to": step.value, "owner_id": self._state.owner_id},
        )


__all__ = [
    "FormData",
    "ImportWizard",
    "OperationKind",
    "WizardState",
    "WizardStep",
]
