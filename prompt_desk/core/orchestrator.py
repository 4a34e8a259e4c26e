"""
Request orchestration.

Resolves a prompt, sends it to the provider, prices the result and records
it in history. A session has at most one request in flight: submitting a
new prompt cancels the previous one (last submit wins, no queueing).

Request lifecycle:
    IDLE -> REQUESTING    on submit
    REQUESTING -> DONE    on success
    REQUESTING -> FAILED  on provider error, history write error or cancellation
    DONE/FAILED -> IDLE   on clear
"""

import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Mapping, Optional

from .extraction import ExtractionMode, extract
from .pricing import DEFAULT_RATE_TABLE, RateTable, calculate_cost
from .templating import resolve
from .token_counter import TokenUsage, estimate_tokens
from prompt_desk.sdk.openai_client import CompletionResult, PromptClient, ProviderError
from prompt_desk.storage.models import PromptRecord
from prompt_desk.storage.repository import HistoryStore

logger = logging.getLogger(__name__)


class RequestState(Enum):
    """Lifecycle of the session's current request."""
    IDLE = "idle"
    REQUESTING = "requesting"
    DONE = "done"
    FAILED = "failed"


class NotificationLevel(Enum):
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    """Transient user-facing message."""
    level: NotificationLevel
    message: str


Notifier = Callable[[Notification], None]


def log_notification(notification: Notification) -> None:
    """Default notification channel: the log."""
    if notification.level == NotificationLevel.ERROR:
        logger.error(notification.message)
    else:
        logger.info(notification.message)


@dataclass
class InFlightRequest:
    """The single outstanding provider call of a session."""
    prompt: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    chunks: List[str] = field(default_factory=list)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@dataclass(frozen=True)
class RequestOutcome:
    """Result of one submit."""
    state: RequestState
    record: Optional[PromptRecord] = None
    message: Optional[str] = None
    cancelled: bool = False

    @property
    def extracted(self) -> Optional[str]:
        return self.record.extracted if self.record else None


class SessionContext:
    """All mutable state of one prompt session.

    Only the orchestrator mutates it. The lock guards the in-flight swap
    and the check-then-record step on completion.
    """

    def __init__(self, history: HistoryStore):
        self.history = history
        self.state = RequestState.IDLE
        self.current_prompt = ""
        self.current_response = ""
        self.in_flight: Optional[InFlightRequest] = None
        self.lock = threading.Lock()

    def is_current(self, request: InFlightRequest) -> bool:
        return self.in_flight is request


class RequestOrchestrator:
    """Submits prompts on behalf of a session."""

    def __init__(
        self,
        client: PromptClient,
        session: SessionContext,
        default_model: str,
        rate_table: RateTable = DEFAULT_RATE_TABLE,
        default_temperature: Optional[float] = None,
        notify: Notifier = log_notification
    ):
        """Initialize the orchestrator.

        Raises:
            ValueError: If default_model is not in the rate table
        """
        rate_table.get_rates(default_model)

        self.client = client
        self.session = session
        self.default_model = default_model
        self.rate_table = rate_table
        self.default_temperature = default_temperature
        self.notify = notify

    def submit(
        self,
        prompt_text: str,
        variables: Optional[Mapping[str, str]] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        stream: bool = False,
        on_chunk: Optional[Callable[[str], None]] = None,
        extract_pattern: Optional[str] = None,
        extract_mode: ExtractionMode = ExtractionMode.REGEX
    ) -> Optional[RequestOutcome]:
        """Resolve and send a prompt, cancelling any request in flight.

        Args:
            prompt_text: Prompt as typed, possibly with placeholders
            variables: Placeholder values
            model: Model override (defaults to the configured model)
            temperature: Temperature override
            stream: Deliver the response incrementally through on_chunk
            on_chunk: Called with each chunk in arrival order
            extract_pattern: Optional extraction pattern applied to the response
            extract_mode: How extract_pattern is interpreted

        Returns:
            The outcome, or None when the resolved prompt is blank

        Raises:
            ValueError: If the model is not in the rate table
        """
        values = dict(variables or {})
        resolved_prompt = resolve(prompt_text or "", values)
        if not resolved_prompt.strip():
            logger.debug("Ignoring empty prompt")
            return None

        model = model or self.default_model
        self.rate_table.get_rates(model)
        if temperature is None:
            temperature = self.default_temperature

        request = InFlightRequest(prompt=resolved_prompt)
        with self.session.lock:
            previous = self.session.in_flight
            if previous is not None:
                previous.cancel()
                logger.info("Cancelled superseded request %s", previous.id)
            self.session.in_flight = request
            self.session.state = RequestState.REQUESTING
            self.session.current_prompt = resolved_prompt
            self.session.current_response = ""

        # Estimated before sending
        input_tokens = estimate_tokens(resolved_prompt)
        logger.info("Submitting request %s to %s (~%d input tokens)", request.id, model, input_tokens)

        try:
            if stream:
                completion = self._stream(request, model, temperature, on_chunk)
            else:
                completion = self.client.complete(resolved_prompt, model, temperature)
        except ProviderError as e:
            return self._fail(request, e)

        return self._finish(
            request,
            completion,
            model=model,
            prompt_text=prompt_text,
            variables=values,
            input_tokens=input_tokens,
            extract_pattern=extract_pattern,
            extract_mode=extract_mode
        )

    def cancel(self) -> bool:
        """Abort the request in flight.

        Returns:
            True if a request was cancelled
        """
        with self.session.lock:
            request = self.session.in_flight
            if request is None:
                return False
            request.cancel()
            self.session.in_flight = None
            self.session.state = RequestState.FAILED
        logger.info("Cancelled request %s", request.id)
        return True

    def clear_history(self) -> None:
        """Empty the history and return the session to idle."""
        with self.session.lock:
            if self.session.in_flight is not None:
                self.session.in_flight.cancel()
                self.session.in_flight = None
            self.session.history.clear()
            self.session.state = RequestState.IDLE
            self.session.current_prompt = ""
            self.session.current_response = ""

    def _stream(
        self,
        request: InFlightRequest,
        model: str,
        temperature: Optional[float],
        on_chunk: Optional[Callable[[str], None]]
    ) -> CompletionResult:
        completion_stream = self.client.stream(request.prompt, model, temperature)
        try:
            for chunk in completion_stream:
                if request.cancelled:
                    break
                request.chunks.append(chunk)
                with self.session.lock:
                    if self.session.is_current(request):
                        self.session.current_response += chunk
                if on_chunk is not None:
                    on_chunk(chunk)
        finally:
            completion_stream.close()

        return CompletionResult(
            text="".join(request.chunks),
            model=completion_stream.model,
            usage=completion_stream.usage,
            request_id=completion_stream.request_id
        )

    def _cancelled_outcome(self, request: InFlightRequest) -> RequestOutcome:
        logger.info("Request %s was cancelled, nothing recorded", request.id)
        return RequestOutcome(state=RequestState.FAILED, cancelled=True, message="Request cancelled")

    def _fail(self, request: InFlightRequest, error: ProviderError) -> RequestOutcome:
        with self.session.lock:
            if request.cancelled:
                return self._cancelled_outcome(request)
            self.session.in_flight = None
            self.session.state = RequestState.FAILED

        logger.warning("Request %s failed (%s): %s", request.id, error.__class__.__name__, error)
        message = error.user_message
        self.notify(Notification(NotificationLevel.ERROR, message))
        return RequestOutcome(state=RequestState.FAILED, message=message)

    def _finish(
        self,
        request: InFlightRequest,
        completion: CompletionResult,
        model: str,
        prompt_text: str,
        variables: Mapping[str, str],
        input_tokens: int,
        extract_pattern: Optional[str],
        extract_mode: ExtractionMode
    ) -> RequestOutcome:
        # Provider-reported counts win over the character estimate
        usage = completion.usage or TokenUsage(
            input_tokens=input_tokens,
            output_tokens=estimate_tokens(completion.text)
        )
        # Providers may answer with a dated model name, so price by the requested one
        cost = calculate_cost(model, usage, self.rate_table)

        extracted = None
        if extract_pattern:
            extracted = extract(completion.text, extract_pattern, extract_mode)

        record = PromptRecord(
            prompt_text=prompt_text,
            resolved_prompt=request.prompt,
            variables=dict(variables),
            response=completion.text,
            usage=usage,
            estimated_cost=cost,
            model=model,
            extracted=extracted
        )

        with self.session.lock:
            if request.cancelled:
                return self._cancelled_outcome(request)
            self.session.in_flight = None
            try:
                self.session.history.append(record)
            except sqlite3.Error as e:
                self.session.state = RequestState.FAILED
                write_error = e
            else:
                self.session.state = RequestState.DONE
                self.session.current_response = completion.text
                write_error = None

        if write_error is not None:
            logger.error("Request %s done but history write failed: %s", request.id, write_error)
            message = f"Response received but could not be saved to history: {write_error}"
            self.notify(Notification(NotificationLevel.ERROR, message))
            return RequestOutcome(state=RequestState.FAILED, record=record, message=message)

        logger.info(
            "Request %s done: %d input / %d output tokens, est. $%s",
            request.id, usage.input_tokens, usage.output_tokens, cost
        )
        return RequestOutcome(state=RequestState.DONE, record=record)
