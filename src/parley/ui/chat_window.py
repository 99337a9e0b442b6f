"""Chat windows: the main window and the compact quick assistant."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Sequence

from PySide6.QtWidgets import (
    QApplication,
    QHBoxLayout,
    QMainWindow,
    QPlainTextEdit,
    QPushButton,
    QTextBrowser,
    QVBoxLayout,
    QWidget,
)

from ..ai.chunks import Chunk, ChunkType
from ..ai.errors import ParleyError, is_abort_error
from ..ai.services.api import ApiService
from ..ai.services.assistants import AssistantService
from ..ai.types import KnowledgeReference, Message, WebSearchResponse
from ..events import EventBus, NotificationPosted

__all__ = ["ChatContext", "ChatWindow", "format_sources"]

_LOGGER = logging.getLogger(__name__)

_STATUS_TIMEOUT_MS = 5_000
_SNIPPET_CHARS = 80


@dataclass(slots=True)
class ChatContext:
    """Services shared by every chat window."""

    api: ApiService
    assistants: AssistantService
    event_bus: EventBus


class ChatWindow(QMainWindow):
    """A conversation view with a composer.

    ``compact`` windows hide on close instead of quitting the application.
    """

    def __init__(self, context: ChatContext, *, title: str = "Parley", compact: bool = False) -> None:
        super().__init__()
        self._context = context
        self._compact = compact
        self._messages: list[Message] = []
        self._pending_reply = ""
        self._ai_task: asyncio.Task[Any] | None = None
        self._quit_on_close = not compact

        self.setWindowTitle(title)
        self._transcript = QTextBrowser()
        self._transcript.setOpenExternalLinks(True)
        self._composer = QPlainTextEdit()
        self._composer.setPlaceholderText("Ask anything")
        self._composer.setMaximumHeight(80 if compact else 120)
        self._send_button = QPushButton("Send")
        self._stop_button = QPushButton("Stop")
        self._stop_button.setEnabled(False)
        self._clear_button = QPushButton("Clear context")
        self._send_button.clicked.connect(self._handle_send)
        self._stop_button.clicked.connect(self.cancel_turn)
        self._clear_button.clicked.connect(self.clear_context)

        buttons = QHBoxLayout()
        buttons.addWidget(self._clear_button)
        buttons.addStretch(1)
        buttons.addWidget(self._stop_button)
        buttons.addWidget(self._send_button)
        layout = QVBoxLayout()
        layout.addWidget(self._transcript, 1)
        layout.addWidget(self._composer)
        layout.addLayout(buttons)
        central = QWidget()
        central.setLayout(layout)
        self.setCentralWidget(central)
        if compact:
            self.resize(420, 520)
        else:
            self.resize(900, 700)

        context.event_bus.subscribe(NotificationPosted, self._handle_notification)

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def set_quit_on_close(self, enabled: bool) -> None:
        self._quit_on_close = enabled

    def clear_context(self) -> None:
        if self._messages and self._messages[-1].type != "clear":
            self._messages.append(Message.clear_marker())
            self._render()

    def cancel_turn(self) -> None:
        if self._ai_task is not None and not self._ai_task.done():
            self._ai_task.cancel()

    def closeEvent(self, event: Any) -> None:  # noqa: N802 - Qt naming
        self.cancel_turn()
        if self._quit_on_close:
            app = QApplication.instance()
            if app is not None and not app.closingDown():
                app.quit()
            event.accept()
            return
        event.ignore()
        self.hide()

    def _handle_send(self) -> None:
        text = self._composer.toPlainText().strip()
        if not text or (self._ai_task is not None and not self._ai_task.done()):
            return
        self._composer.clear()
        question = Message.user(text)
        self._messages.append(question)
        self._pending_reply = ""
        self._render()
        loop = asyncio.get_event_loop()
        self._ai_task = loop.create_task(self._run_turn(question))
        self._set_busy(True)

    async def _run_turn(self, question: Message) -> None:
        assistant = self._context.assistants.get_default_assistant()
        completed = False
        try:
            await self._context.api.fetch_chat_completion(self._messages, assistant, self._handle_chunk)
            completed = True
        except Exception as exc:
            if is_abort_error(exc):
                _LOGGER.info("Chat turn cancelled")
            elif isinstance(exc, ParleyError):
                self.statusBar().showMessage(str(exc), _STATUS_TIMEOUT_MS)
            else:
                _LOGGER.exception("Chat turn failed")
                self.statusBar().showMessage(f"Request failed: {exc}", _STATUS_TIMEOUT_MS)
        except asyncio.CancelledError:
            _LOGGER.info("Chat turn cancelled")
        finally:
            if self._pending_reply:
                reply = self._pending_reply + self._sources_for(question)
                self._messages.append(Message.assistant(reply, ask_id=question.id))
            self._pending_reply = ""
            self._set_busy(False)
            self._render()
        if completed and sum(1 for message in self._messages if message.role == "user") == 1:
            title = await self._context.api.fetch_messages_summary(self._messages, assistant)
            if title:
                self.setWindowTitle(f"Parley - {title}")

    def _handle_chunk(self, chunk: Chunk) -> None:
        if chunk.type == ChunkType.EXTERNAL_TOOL_IN_PROGRESS:
            self.statusBar().showMessage("Searching...")
        elif chunk.type == ChunkType.EXTERNAL_TOOL_COMPLETE:
            self.statusBar().clearMessage()
        elif chunk.type == ChunkType.MCP_TOOL_IN_PROGRESS:
            names = ", ".join(response.tool.name for response in chunk.tool_responses)
            self.statusBar().showMessage(f"Running {names}...")
        elif chunk.type == ChunkType.TEXT_DELTA and chunk.text:
            self._pending_reply += chunk.text
            self._render()
        elif chunk.type == ChunkType.ERROR and chunk.error is not None:
            self.statusBar().showMessage(str(chunk.error), _STATUS_TIMEOUT_MS)

    def _sources_for(self, question: Message) -> str:
        store = self._context.api.result_store
        sources = format_sources(
            store.get(f"web-search-{question.id}"),
            store.get(f"knowledge-search-{question.id}"),
        )
        return f"\n\n{sources}" if sources else ""

    def _handle_notification(self, event: NotificationPosted) -> None:
        self.statusBar().showMessage(event.text, _STATUS_TIMEOUT_MS)

    def _set_busy(self, busy: bool) -> None:
        self._send_button.setEnabled(not busy)
        self._stop_button.setEnabled(busy)

    def _render(self) -> None:
        blocks: list[str] = []
        for message in self._messages:
            if message.type == "clear":
                blocks.append("---")
            elif message.role == "user":
                blocks.append(f"**You:** {message.content}")
            else:
                blocks.append(message.content)
        if self._pending_reply:
            blocks.append(self._pending_reply)
        self._transcript.setMarkdown("\n\n".join(blocks))
        scrollbar = self._transcript.verticalScrollBar()
        scrollbar.setValue(scrollbar.maximum())


def format_sources(
    web: WebSearchResponse | None,
    references: Sequence[KnowledgeReference] | None,
) -> str:
    """Render the search results behind a reply as a Markdown source list."""

    lines: list[str] = []
    if web is not None:
        for index, result in enumerate(web.results.results, start=1):
            label = result.title or result.url
            lines.append(f"{index}. [{label}]({result.url})" if result.url else f"{index}. {label}")
    for reference in references or ():
        label = reference.source_url or reference.content[:_SNIPPET_CHARS].strip()
        lines.append(f"- [{reference.id}] {label}")
    if not lines:
        return ""
    return "**Sources**\n\n" + "\n".join(lines)
