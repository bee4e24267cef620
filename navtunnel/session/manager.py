import logging
import queue
import threading
from typing import Any, Iterator, NamedTuple, Optional

from navtunnel.exceptions import (
    NavTunnelError,
    ProcessNotRunning,
    SessionError,
    StoreAccessFailure,
    UnexpectedProcessExit,
)
from navtunnel.local.config import effective_settings
from navtunnel.local.credentials import CredentialStore, LoadResult, SaveResult
from navtunnel.local.supervisor import ProcessSupervisor, SessionProcess, StopResult, create_supervisor
from navtunnel.log.buffer import LogBuffer
from navtunnel.session.events import (
    ALLOWED_TRANSITIONS,
    EVENT_TARGET_STATES,
    PROMPT_FIELDS,
    Event,
    STAGE_PASSWORD,
    EventKind,
    SessionState,
)
from navtunnel.session.protocol import MarkerTable, ProtocolClassifier

log = logging.getLogger(__name__)


class _InboxItem(NamedTuple):
    kind: str              # "line", "exit" or "stop"
    payload: Any = None
    stream: Optional[str] = None


class SessionManager:
    """
    Drives one OpenVPN session from spawn to teardown.

    Output lines from the supervisor's reader threads and the exit notice from
    its waiter thread all go through a single inbox queue. One dispatcher
    thread drains it, classifies lines, owns every state transition and
    publishes events in arrival order. Consumers read the events with
    `events()` and answer prompts with the `submit_*` methods. Only the field
    OpenVPN is currently asking for (`pending_prompt`) is accepted; after a
    rejection the rejected stage is pending again.

    A manager runs one session only. Once it reaches DISCONNECTED or FAILED a
    new instance is needed to reconnect.
    """

    def __init__(
        self,
        supervisor: Optional[ProcessSupervisor] = None,
        log_buffer: Optional[LogBuffer] = None,
        markers: Optional[MarkerTable] = None,
        credential_store: Optional[CredentialStore] = None,
        settings: Any = None,
    ) -> None:
        self.settings = settings if settings is not None else effective_settings
        self._supervisor = supervisor if supervisor is not None else create_supervisor(settings=self.settings)
        self._log_buffer = log_buffer if log_buffer is not None else LogBuffer(self.settings.LOG_BUFFER_CAPACITY)
        self._markers = markers if markers is not None else MarkerTable.from_settings(self.settings)
        self._classifier = ProtocolClassifier(self._markers)
        self._credential_store = credential_store

        self._state = SessionState.IDLE
        self._state_lock = threading.Lock()
        self._control_lock = threading.Lock()
        self._inbox: "queue.Queue[_InboxItem]" = queue.Queue()
        self._events: "queue.Queue[Optional[Event]]" = queue.Queue()
        self._process: Optional[SessionProcess] = None
        self._dispatcher: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._closed = threading.Event()
        self._disconnected_emitted = False
        self._consecutive_failures = 0
        self._pending_prompt: Optional[str] = None
        self._last_username: Optional[str] = None

    def __repr__(self) -> str:
        return f"<SessionManager state={self.state.value} pid={self.pid}>"

    #* --- Read-only Queries ---
    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def log_buffer(self) -> LogBuffer:
        return self._log_buffer

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def is_running(self) -> bool:
        return bool(self._process and self._process.is_running)

    @property
    def consecutive_failures(self) -> int:
        """Authentication rejections since the last successful connection."""
        with self._state_lock:
            return self._consecutive_failures

    @property
    def pending_prompt(self) -> Optional[str]:
        """The field OpenVPN is waiting for ("username", "password" or "otp"), if any."""
        with self._state_lock:
            return self._pending_prompt

    @property
    def closed(self) -> bool:
        """True once the event channel has been closed."""
        return self._closed.is_set()

    #* --- Control Surface ---
    def start(self, config_path: str, executable_path: Optional[str] = None) -> None:
        """
        Launches OpenVPN against the profile and begins processing its output.

        :param config_path: The .ovpn profile.
        :param executable_path: Explicit OpenVPN binary; discovered when omitted.
        :raises SessionError: If this manager was already started.
        :raises NavTunnelError: The supervisor's typed failure; the session is FAILED.
        """
        with self._control_lock:
            if self.state is not SessionState.IDLE:
                raise SessionError(f"Session already {self.state.value}; create a new manager to reconnect")

            try:
                self._process = self._supervisor.start(
                    config_path,
                    self.settings.MANAGEMENT_PORT,
                    self._on_log_line,
                    executable_path=executable_path,
                    on_exit=self._on_exit,
                    prompt_markers=self._markers.prompt_markers(),
                )
            except NavTunnelError as e:
                log.error(f"Could not start the VPN session: {e}")
                self._set_state(SessionState.FAILED)
                raise

            self._set_state(SessionState.CONNECTING)
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop, name="SessionDispatcher", daemon=True
            )
            self._dispatcher.start()

    def stop(self) -> Optional[StopResult]:
        """
        Ends the session: stops the child, moves to DISCONNECTED and closes
        the event channel. Calling it again is a no-op.

        :return: The supervisor's stop result, or None if nothing was running.
        :raises ProcessTerminationFailure: If the forced kill failed. The
            channel is closed regardless.
        """
        with self._control_lock:
            if self._dispatcher is None:
                if not self.state.is_terminal:
                    self._set_state(SessionState.DISCONNECTED)
                self._close()
                return None

            self._stopping.set()
            result = None
            try:
                if self._process is not None:
                    result = self._supervisor.stop(self._process)
            finally:
                self._inbox.put(_InboxItem("stop"))
                self._dispatcher.join(self.settings.THREAD_JOIN_TIMEOUT * 2)
                if self._dispatcher.is_alive():
                    log.warning("Session dispatcher did not finish in time; closing the event channel.")
                    self._close()
            return result

    #* --- Event Channel ---
    def events(self) -> Iterator[Event]:
        """Yields events in order until the channel is closed."""
        while True:
            event = self._events.get()
            if event is None:
                # Leave the sentinel for any other reader.
                self._events.put(None)
                return
            yield event

    def get_event(self, timeout: Optional[float] = None) -> Optional[Event]:
        """
        Returns the next event, or None once the channel is closed.

        :raises queue.Empty: If no event arrived within `timeout` seconds.
        """
        event = self._events.get(timeout=timeout)
        if event is None:
            self._events.put(None)
        return event

    #* --- Responses ---
    def submit_username(self, username: str) -> None:
        self._submit("username", username)
        self._last_username = username

    def submit_password(self, password: str, remember: Optional[bool] = None) -> Optional[SaveResult]:
        """
        Answers a password prompt.

        :param password: The password.
        :param remember: With a credential store attached, True saves the last
            submitted username with this password and False deletes any stored
            pair. None leaves the store untouched.
        :return: Where the pair was saved, if it was.
        """
        self._submit("password", password)
        if remember is None or self._credential_store is None:
            return None
        return self._persist_credentials(password, remember)

    def submit_otp(self, code: str) -> None:
        self._submit("otp", code)

    def saved_credentials(self) -> Optional[LoadResult]:
        """Returns stored credentials for prefilling prompts, if any."""
        if self._credential_store is None:
            return None
        try:
            result = self._credential_store.load()
        except NavTunnelError as e:
            log.debug(f"No saved credentials: {e}")
            return None
        if result.warning:
            log.warning(result.warning)
        return result

    def _submit(self, field_name: str, value: str) -> None:
        """
        Writes the answer to the pending prompt.

        :raises ValueError: If the value is empty.
        :raises ProcessNotRunning: If the session is not live.
        :raises SessionError: If OpenVPN is not waiting for this field.
        """
        if not value:
            raise ValueError(f"{field_name} must not be empty")
        process = self._process
        if process is None or self.state.is_terminal:
            raise ProcessNotRunning(f"Cannot send {field_name}: no active session")

        # Claimed before writing: the next prompt may arrive before write_line returns.
        with self._state_lock:
            pending = self._pending_prompt
            if pending != field_name:
                waiting_for = f"it is waiting for {pending}" if pending else "no prompt is pending"
                raise SessionError(f"OpenVPN did not ask for {field_name}; {waiting_for}")
            self._pending_prompt = None

        command = self._markers.format_command(field_name, value)
        try:
            self._supervisor.write_line(process, command)
        except NavTunnelError:
            with self._state_lock:
                if self._pending_prompt is None:
                    self._pending_prompt = field_name
            raise
        log.info(f"Sent {field_name} to OpenVPN.")

    def _persist_credentials(self, password: str, remember: bool) -> Optional[SaveResult]:
        store = self._credential_store
        try:
            if not remember:
                store.delete()
                return None
            if not self._last_username:
                log.warning("No username submitted in this session; credentials were not saved.")
                return None
            result = store.save(self._last_username, password)
        except StoreAccessFailure as e:
            # Never blocks the handshake.
            log.warning(f"Could not update saved credentials: {e}")
            return None
        if result.warning:
            log.warning(result.warning)
        return result

    #* --- Supervisor Callbacks (reader / waiter threads) ---
    def _on_log_line(self, line: str, stream: str) -> None:
        self._inbox.put(_InboxItem("line", line, stream))

    def _on_exit(self, returncode: Optional[int]) -> None:
        self._inbox.put(_InboxItem("exit", returncode))

    #* --- Dispatcher Thread ---
    def _dispatch_loop(self) -> None:
        while True:
            item = self._inbox.get()
            try:
                if item.kind == "line":
                    self._handle_line(item.payload, item.stream)
                elif item.kind == "exit":
                    if self._handle_exit(item.payload):
                        return
                elif item.kind == "stop":
                    self._handle_stop()
                    return
            except Exception as e:
                log.critical(f"Error in session dispatcher: {e}", exc_info=True)
                self._set_state(SessionState.FAILED)
                self._emit(Event(EventKind.FATAL, f"Internal error: {e}"))
                self._abort_process()
                self._close()
                return

    def _handle_line(self, line: str, stream: Optional[str]) -> None:
        event = self._classifier.classify(line, stream)
        if event.kind is EventKind.LOG_LINE:
            self._log_buffer.add(line)
        elif event.kind is EventKind.AUTH_FAILED:
            with self._state_lock:
                self._consecutive_failures += 1
                failures = self._consecutive_failures
            log.warning(f"Authentication rejected at stage '{event.stage}' ({failures} in a row).")
        elif event.kind is EventKind.CONNECTED:
            with self._state_lock:
                self._consecutive_failures = 0
            log.info("VPN connection established.")

        self._track_prompt(event)
        target = EVENT_TARGET_STATES.get(event.kind)
        if target is not None:
            self._set_state(target)
        if event.kind is EventKind.DISCONNECTED:
            if self._disconnected_emitted:
                return
            self._disconnected_emitted = True
        self._emit(event)

    def _track_prompt(self, event: Event) -> None:
        if event.kind in PROMPT_FIELDS:
            expected = PROMPT_FIELDS[event.kind]
        elif event.kind is EventKind.AUTH_FAILED:
            # The rejected credential is asked for again.
            expected = event.stage or STAGE_PASSWORD
        elif event.kind in (EventKind.CONNECTED, EventKind.DISCONNECTED):
            expected = None
        else:
            return
        with self._state_lock:
            self._pending_prompt = expected

    def _abort_process(self) -> None:
        """Stops the child after a dispatcher failure; errors are only logged."""
        process = self._process
        if process is None or not process.is_running:
            return
        self._stopping.set()
        try:
            self._supervisor.stop(process)
        except NavTunnelError as e:
            log.error(f"Could not stop OpenVPN after a dispatcher failure: {e}")

    def _handle_exit(self, returncode: Optional[int]) -> bool:
        """Handles the child's exit. Returns True if the dispatcher should end."""
        if self._stopping.is_set():
            # stop() is tearing the session down; the "stop" item follows.
            return False

        if self.state.is_live:
            error = UnexpectedProcessExit(
                f"OpenVPN exited unexpectedly (exit code {returncode})", returncode=returncode
            )
            log.error(str(error))
            self._set_state(SessionState.FAILED)
            self._emit(Event(EventKind.FATAL, str(error)))
        elif not self.state.is_terminal:
            self._set_state(SessionState.DISCONNECTED)

        self._emit_disconnected(f"OpenVPN exited (exit code {returncode})")
        self._close()
        return True

    def _handle_stop(self) -> None:
        if not self.state.is_terminal:
            self._set_state(SessionState.DISCONNECTED)
        self._emit_disconnected("Disconnected by user")
        self._close()

    #* --- Helpers ---
    def _set_state(self, new_state: SessionState) -> bool:
        with self._state_lock:
            old_state = self._state
            if new_state not in ALLOWED_TRANSITIONS[old_state]:
                if old_state is not new_state:
                    log.debug(f"Ignoring transition {old_state.value} -> {new_state.value}.")
                return False
            self._state = new_state
        if old_state is not new_state:
            log.info(f"Session state: {old_state.value} -> {new_state.value}")
        return True

    def _emit(self, event: Event) -> None:
        if self._closed.is_set():
            return
        self._events.put(event)

    def _emit_disconnected(self, message: str) -> None:
        if self._disconnected_emitted:
            return
        self._disconnected_emitted = True
        self._emit(Event(EventKind.DISCONNECTED, message))

    def _close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._events.put(None)
